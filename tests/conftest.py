"""Shared pytest fixtures for the weebase test suite."""

from __future__ import annotations

from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock

import pytest

from weebase.config import Settings, override_settings
from weebase.connections import ActiveConnection, ConnectionManager
from weebase.console import Console
from weebase.dialects import Dialect
from weebase.params import ConnectRequest

# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    settings = Settings(
        safety={"safe_mode_default": True, "read_only_mode": False},
        profiles={"path": None},
        logging={"level": "warning", "format": "console"},
    )
    override_settings(settings)
    return settings


@pytest.fixture
def db(test_settings: Settings) -> Console:
    return Console(test_settings)


# ---------------------------------------------------------------------------
# Connections
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_conn() -> ActiveConnection:
    """An active connection whose handle records every call."""
    return ActiveConnection(
        driver="sqlite", dialect=Dialect.SQLITE, handle=MagicMock(), dsn=":memory:"
    )


USERS_DDL = (
    "CREATE TABLE users ("
    "id INTEGER PRIMARY KEY, "
    "name TEXT NOT NULL, "
    "team TEXT, "
    "email TEXT DEFAULT 'n/a')"
)

USERS_ROWS = [
    (1, "ada", "core"),
    (2, "grace", "core"),
    (3, "linus", "kernel"),
]


@pytest.fixture
def sqlite_conn(db: Console) -> Generator[ActiveConnection, None, None]:
    """A connected in-memory sqlite database with a small ``users`` table."""
    result = db.connect(ConnectRequest(driver="sqlite", dsn=":memory:"))
    conn = result.connection
    assert conn is not None
    db.execute_sql(conn, USERS_DDL)
    for uid, name, team in USERS_ROWS:
        db.execute_sql(conn, f"INSERT INTO users (id, name, team) VALUES ({uid}, '{name}', '{team}')")
    yield conn
    ConnectionManager.disconnect(conn)


@pytest.fixture
def sqlite_file(tmp_path: Path) -> Path:
    return tmp_path / "data" / "app.db"
