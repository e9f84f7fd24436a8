"""Unit tests — ConnectionManager resolve / connect / disconnect."""

from __future__ import annotations

from typing import Any
from unittest.mock import MagicMock

import pytest
import sqlalchemy as sa

from weebase.connections import ConnectionManager, EngineHandle, create_engine_handle
from weebase.dialects import Dialect, EnabledDrivers
from weebase.exceptions import (
    ConfigurationError,
    DatabaseConnectionError,
    ProfileNotFoundError,
    ValidationError,
)
from weebase.params import ConnectRequest
from weebase.profiles import ConnectionProfile, InMemoryProfileStore
from weebase.statements import Statement


@pytest.fixture
def profiles() -> InMemoryProfileStore:
    return InMemoryProfileStore()


@pytest.fixture
def factory() -> MagicMock:
    return MagicMock(side_effect=lambda driver, dsn: MagicMock())


@pytest.fixture
def manager(profiles: InMemoryProfileStore, factory: MagicMock) -> ConnectionManager:
    return ConnectionManager(profiles=profiles, handle_factory=factory)


@pytest.mark.unit
class TestResolve:
    def test_profile_wins(self, manager: ConnectionManager, profiles: InMemoryProfileStore) -> None:
        saved = profiles.save(ConnectionProfile(name="p", driver="sqlite", dsn="saved.db"))
        request = ConnectRequest(
            profile_id=saved.id, driver="postgres", dsn="host=x", database="ignored"
        )
        assert manager.resolve(request) == ("sqlite", "saved.db")

    def test_fields_win_over_raw_dsn(self, manager: ConnectionManager) -> None:
        request = ConnectRequest(driver="postgres", dsn="host=raw", host="db", database="app")
        assert manager.resolve(request) == ("postgres", "host=db dbname=app sslmode=disable")

    def test_raw_dsn(self, manager: ConnectionManager) -> None:
        assert manager.resolve(ConnectRequest(driver="sqlite", dsn="x.db")) == ("sqlite", "x.db")

    def test_unknown_profile(self, manager: ConnectionManager) -> None:
        with pytest.raises(ProfileNotFoundError):
            manager.resolve(ConnectRequest(profile_id="missing"))

    def test_driver_required(self, manager: ConnectionManager) -> None:
        with pytest.raises(ValidationError, match="driver is required"):
            manager.resolve(ConnectRequest(dsn="x.db"))

    def test_nothing_to_connect_to(self, manager: ConnectionManager) -> None:
        with pytest.raises(ValidationError, match="dsn, connection fields or profile_id required"):
            manager.resolve(ConnectRequest(driver="sqlite"))

    def test_disabled_driver(self, factory: MagicMock) -> None:
        manager = ConnectionManager(enabled=EnabledDrivers(["sqlite"]), handle_factory=factory)
        with pytest.raises(ConfigurationError, match="unsupported driver: mysql"):
            manager.resolve(ConnectRequest(driver="mysql", dsn="tcp(db)/x"))


@pytest.mark.unit
class TestConnect:
    def test_success_pings(self, manager: ConnectionManager, factory: MagicMock) -> None:
        conn = manager.connect("pg", "host=db")
        factory.assert_called_once_with("pg", "host=db")
        conn.handle.ping.assert_called_once()
        assert conn.dialect is Dialect.POSTGRES
        assert conn.driver == "pg"
        assert len(conn.id) == 32

    def test_factory_failure_wrapped(self, profiles: InMemoryProfileStore) -> None:
        manager = ConnectionManager(
            profiles=profiles, handle_factory=MagicMock(side_effect=RuntimeError("no route"))
        )
        with pytest.raises(DatabaseConnectionError, match="connection failed: no route"):
            manager.connect("postgres", "host=db")

    def test_ping_failure_closes_handle(self, profiles: InMemoryProfileStore) -> None:
        handle = MagicMock()
        handle.ping.side_effect = RuntimeError("auth failed")
        manager = ConnectionManager(profiles=profiles, handle_factory=lambda d, s: handle)
        with pytest.raises(DatabaseConnectionError) as exc_info:
            manager.connect("postgres", "host=db password=s3cret")
        handle.close.assert_called_once()
        assert isinstance(exc_info.value.cause, RuntimeError)

    def test_configuration_errors_pass_through(self, profiles: InMemoryProfileStore) -> None:
        manager = ConnectionManager(
            profiles=profiles,
            handle_factory=MagicMock(side_effect=ConfigurationError("malformed DSN: x")),
        )
        with pytest.raises(ConfigurationError, match="malformed DSN"):
            manager.connect("postgres", "???")

    def test_open_resolves_then_connects(self, manager: ConnectionManager, factory: MagicMock) -> None:
        manager.open(ConnectRequest(driver="sqlite", dsn="x.db"))
        factory.assert_called_once_with("sqlite", "x.db")


@pytest.mark.unit
class TestDisconnect:
    def test_idempotent(self, manager: ConnectionManager) -> None:
        conn = manager.connect("sqlite", ":memory:")
        assert ConnectionManager.disconnect(conn) is True
        assert ConnectionManager.disconnect(conn) is False
        conn.handle.close.assert_called_once()

    def test_none(self) -> None:
        assert ConnectionManager.disconnect(None) is False


@pytest.mark.unit
class TestEngineHandle:
    def test_sqlite_memory_round_trip(self) -> None:
        handle = create_engine_handle("sqlite", ":memory:")
        try:
            assert isinstance(handle, EngineHandle)
            handle.execute(Statement("CREATE TABLE t (a INTEGER)"))
            handle.execute(Statement("INSERT INTO t (a) VALUES (:p1)", {"p1": 5}))
            assert handle.scalar(Statement("SELECT a FROM t")) == 5
        finally:
            handle.close()
        assert handle.closed

    def test_query_truncates(self) -> None:
        handle = create_engine_handle("sqlite", ":memory:")
        try:
            rows = handle.query(
                Statement("WITH RECURSIVE n(x) AS (SELECT 1 UNION ALL SELECT x + 1 FROM n WHERE x < 10) SELECT x FROM n"),
                max_rows=3,
            )
            assert rows.columns == ["x"]
            assert [r["x"] for r in rows.rows] == [1, 2, 3]
            assert rows.truncated
        finally:
            handle.close()

    def test_raw_statement_keeps_colons(self) -> None:
        handle = create_engine_handle("sqlite", ":memory:")
        try:
            rows = handle.query(Statement("SELECT ':p1' AS v", raw=True))
            assert rows.rows == [{"v": ":p1"}]
        finally:
            handle.close()

    def test_transaction_rolls_back_on_error(self) -> None:
        handle = create_engine_handle("sqlite", ":memory:")
        try:
            handle.execute(Statement("CREATE TABLE t (a INTEGER)"))
            with pytest.raises(RuntimeError):
                with handle.transaction() as tx:
                    tx.execute(Statement("INSERT INTO t (a) VALUES (1)"))
                    raise RuntimeError("boom")
            assert handle.scalar(Statement("SELECT COUNT(*) FROM t")) == 0
        finally:
            handle.close()

    def test_duplicate_column_names_get_suffixes(self) -> None:
        handle = create_engine_handle("sqlite", ":memory:")
        try:
            rows = handle.query(Statement("SELECT 1 AS id, 2 AS id, 3 AS id_2"))
            assert rows.columns == ["id", "id_2", "id_2_2"]
            assert rows.rows == [{"id": 1, "id_2": 2, "id_2_2": 3}]
        finally:
            handle.close()

    def test_sqlite_foreign_keys_on(self) -> None:
        handle = create_engine_handle("sqlite", ":memory:")
        try:
            assert handle.scalar(Statement("PRAGMA foreign_keys")) == 1
        finally:
            handle.close()

    def test_transaction_covers_its_first_select(self) -> None:
        handle = create_engine_handle("sqlite", ":memory:")
        handle.execute(Statement("CREATE TABLE t (a INTEGER)"))
        seen: list[bool] = []

        def record(
            conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: bool
        ) -> None:
            if statement.startswith("SELECT COUNT"):
                seen.append(cursor.connection.in_transaction)

        sa.event.listen(handle.engine, "after_cursor_execute", record)
        try:
            with handle.transaction() as tx:
                tx.scalar(Statement("SELECT COUNT(*) FROM t"))
            assert seen == [True]
        finally:
            sa.event.remove(handle.engine, "after_cursor_execute", record)
            handle.close()

    @pytest.mark.parametrize("read_only,commits", [(False, 1), (True, 0)])
    def test_query_commit_follows_read_only(self, read_only: bool, commits: int) -> None:
        handle = create_engine_handle("sqlite", ":memory:")
        seen: list[Any] = []

        def record(conn: Any) -> None:
            seen.append(conn)

        sa.event.listen(handle.engine, "commit", record)
        try:
            handle.query(Statement("SELECT 1"), read_only=read_only)
            assert len(seen) == commits
        finally:
            sa.event.remove(handle.engine, "commit", record)
            handle.close()

    def test_close_is_idempotent(self) -> None:
        handle = create_engine_handle("sqlite", ":memory:")
        handle.close()
        handle.close()
        assert handle.closed
