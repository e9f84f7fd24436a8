"""Unit tests — InMemorySessionStore."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from weebase.connections import ActiveConnection
from weebase.dialects import Dialect
from weebase.sessions import InMemorySessionStore


def _conn() -> ActiveConnection:
    return ActiveConnection(driver="sqlite", dialect=Dialect.SQLITE, handle=MagicMock(), dsn=":memory:")


@pytest.mark.unit
class TestAttach:
    def test_attach_and_get(self) -> None:
        store = InMemorySessionStore()
        conn = _conn()
        store.attach("s1", conn)
        assert store.get("s1") is conn
        assert store.get("other") is None
        assert len(store) == 1

    def test_replacing_closes_previous(self) -> None:
        store = InMemorySessionStore()
        first, second = _conn(), _conn()
        store.attach("s1", first)
        store.attach("s1", second)
        first.handle.close.assert_called_once()
        second.handle.close.assert_not_called()
        assert first.closed
        assert store.get("s1") is second

    def test_reattaching_same_connection_keeps_it_open(self) -> None:
        store = InMemorySessionStore()
        conn = _conn()
        store.attach("s1", conn)
        store.attach("s1", conn)
        conn.handle.close.assert_not_called()


@pytest.mark.unit
class TestDetach:
    def test_detach_closes(self) -> None:
        store = InMemorySessionStore()
        conn = _conn()
        store.attach("s1", conn)
        assert store.detach("s1") is conn
        conn.handle.close.assert_called_once()
        assert store.get("s1") is None

    def test_detach_is_idempotent(self) -> None:
        store = InMemorySessionStore()
        conn = _conn()
        store.attach("s1", conn)
        store.detach("s1")
        assert store.detach("s1") is None
        conn.handle.close.assert_called_once()


@pytest.mark.unit
class TestExpire:
    def test_expires_idle_connections(self) -> None:
        store = InMemorySessionStore()
        stale, fresh = _conn(), _conn()
        stale.last_used_at -= timedelta(hours=2)
        store.attach("old", stale)
        store.attach("new", fresh)
        assert store.expire(3600) == ["old"]
        stale.handle.close.assert_called_once()
        fresh.handle.close.assert_not_called()
        assert store.get("new") is fresh
        assert len(store) == 1

    def test_zero_disables_expiry(self) -> None:
        store = InMemorySessionStore()
        conn = _conn()
        conn.last_used_at -= timedelta(days=30)
        store.attach("s1", conn)
        assert store.expire(0) == []
        assert store.get("s1") is conn

    def test_touch_resets_idle_time(self) -> None:
        conn = _conn()
        conn.last_used_at -= timedelta(hours=1)
        conn.touch()
        assert conn.idle_seconds() < 5
