"""Connection lifecycle.

A :class:`DatabaseHandle` is the single capability the rest of the core
needs from a database: run a query, run a statement, open a transaction.
:class:`EngineHandle` implements it once over a SQLAlchemy ``Engine`` for
every dialect.

:class:`ConnectionManager` opens handles (connect + ping), resolves where
to connect from a profile / discrete fields / raw DSN, and closes them.
"""

from __future__ import annotations

import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterator, Protocol, Sequence

import sqlalchemy as sa
from sqlalchemy.pool import StaticPool

from weebase.dialects import Dialect, DialectRegistry, EnabledDrivers, normalize
from weebase.dsn import build_dsn, to_engine_url
from weebase.exceptions import DatabaseConnectionError, ValidationError, WeebaseError
from weebase.logging import get_logger, redact_dsn
from weebase.params import ConnectRequest
from weebase.profiles import ProfileStore
from weebase.statements import Statement

log = get_logger(__name__)


@dataclass
class Rows:
    """Rows fetched by :meth:`DatabaseHandle.query`."""

    columns: list[str]
    rows: list[dict[str, Any]]
    truncated: bool = False


class DatabaseHandle(Protocol):
    dialect: Dialect | str

    def query(
        self, stmt: Statement, max_rows: int | None = None, read_only: bool = False
    ) -> Rows: ...

    def scalar(self, stmt: Statement) -> Any: ...

    def execute(self, stmt: Statement) -> int: ...

    def transaction(self) -> Any:
        """Context manager yielding a handle bound to one transaction."""
        ...

    def ping(self) -> None: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------


def _run(conn: sa.Connection, stmt: Statement) -> sa.CursorResult[Any]:
    if stmt.raw:
        return conn.exec_driver_sql(stmt.sql, execution_options={"no_parameters": True})
    return conn.execute(sa.text(stmt.sql), stmt.params)


def _unique_columns(keys: Sequence[str]) -> list[str]:
    """Suffix repeated names (``id``, ``id_2`` …) so every column has its own key."""
    columns: list[str] = []
    taken: set[str] = set()
    for key in keys:
        name, n = key, 1
        while name in taken:
            n += 1
            name = f"{key}_{n}"
        taken.add(name)
        columns.append(name)
    return columns


def _fetch(result: sa.CursorResult[Any], max_rows: int | None) -> Rows:
    if not result.returns_rows:
        return Rows(columns=[], rows=[])
    columns = _unique_columns(list(result.keys()))
    if max_rows is None:
        fetched = result.fetchall()
        truncated = False
    else:
        fetched = result.fetchmany(max_rows + 1)
        truncated = len(fetched) > max_rows
        fetched = fetched[:max_rows]
        result.close()
    return Rows(columns=columns, rows=[dict(zip(columns, r)) for r in fetched], truncated=truncated)


class _TransactionHandle:
    """Handle bound to one open transaction. Created by ``EngineHandle.transaction()``."""

    def __init__(self, conn: sa.Connection, dialect: Dialect | str) -> None:
        self._conn = conn
        self.dialect = dialect

    def query(
        self, stmt: Statement, max_rows: int | None = None, read_only: bool = False
    ) -> Rows:
        return _fetch(_run(self._conn, stmt), max_rows)

    def scalar(self, stmt: Statement) -> Any:
        return _run(self._conn, stmt).scalar()

    def execute(self, stmt: Statement) -> int:
        return _run(self._conn, stmt).rowcount

    @contextmanager
    def transaction(self) -> Iterator[_TransactionHandle]:
        with self._conn.begin_nested():
            yield self

    def ping(self) -> None:
        self._conn.exec_driver_sql("SELECT 1")

    def close(self) -> None:
        raise WeebaseError("cannot close a handle bound to an open transaction")


class EngineHandle:
    """:class:`DatabaseHandle` over a SQLAlchemy engine.

    Statements outside :meth:`transaction` run on their own connection and
    are committed immediately.  A per-handle lock serializes use, which
    matters for sqlite where every caller shares one DBAPI connection.
    """

    def __init__(self, engine: sa.Engine, dialect: Dialect | str) -> None:
        self._engine = engine
        self.dialect = dialect
        self._lock = threading.RLock()
        self._closed = False

    @property
    def engine(self) -> sa.Engine:
        return self._engine

    @property
    def closed(self) -> bool:
        return self._closed

    def query(
        self, stmt: Statement, max_rows: int | None = None, read_only: bool = False
    ) -> Rows:
        """Fetch rows; *read_only* rolls the connection back instead of committing."""
        with self._lock, self._engine.connect() as conn:
            rows = _fetch(_run(conn, stmt), max_rows)
            if read_only:
                conn.rollback()
            else:
                conn.commit()
            return rows

    def scalar(self, stmt: Statement) -> Any:
        with self._lock, self._engine.connect() as conn:
            return _run(conn, stmt).scalar()

    def execute(self, stmt: Statement) -> int:
        with self._lock, self._engine.begin() as conn:
            return _run(conn, stmt).rowcount

    @contextmanager
    def transaction(self) -> Iterator[_TransactionHandle]:
        """Commit on normal exit, roll back on any exception."""
        with self._lock, self._engine.begin() as conn:
            yield _TransactionHandle(conn, self.dialect)

    def ping(self) -> None:
        with self._lock, self._engine.connect() as conn:
            conn.exec_driver_sql("SELECT 1")

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._engine.dispose()


def _sqlite_explicit_begin(engine: sa.Engine) -> None:
    """Emit BEGIN from SQLAlchemy instead of pysqlite.

    pysqlite only opens a transaction before a write, so a transaction's
    leading SELECT (the mutation count guard) would otherwise run outside it.
    """

    @sa.event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @sa.event.listens_for(engine, "begin")
    def _on_begin(conn: sa.Connection) -> None:
        conn.exec_driver_sql("BEGIN")


def create_engine_handle(driver: str, dsn: str) -> EngineHandle:
    """Build an (unconnected) engine for *dsn* and wrap it."""
    dialect = normalize(driver)
    profile = DialectRegistry.get(driver)
    url = to_engine_url(driver, dsn)

    engine_kwargs: dict[str, Any] = dict(profile.engine_kwargs)
    if dialect == Dialect.SQLITE:
        # One shared connection keeps :memory: databases alive across calls.
        engine_kwargs["poolclass"] = StaticPool
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    else:
        engine_kwargs.setdefault("pool_pre_ping", True)

    engine = sa.create_engine(url, **engine_kwargs)
    if dialect == Dialect.SQLITE:
        _sqlite_explicit_begin(engine)

    return EngineHandle(engine, dialect)


# ---------------------------------------------------------------------------
# Active connection
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ActiveConnection:
    """The live, session-scoped handle to one database."""

    driver: str
    dialect: Dialect | str
    handle: DatabaseHandle
    dsn: str = field(repr=False)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    connected_at: datetime = field(default_factory=_utcnow)
    last_used_at: datetime = field(default_factory=_utcnow)
    closed: bool = False

    def touch(self) -> None:
        self.last_used_at = _utcnow()

    def idle_seconds(self, now: datetime | None = None) -> float:
        return ((now or _utcnow()) - self.last_used_at).total_seconds()


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------

HandleFactory = Callable[[str, str], DatabaseHandle]


class ConnectionManager:
    """Opens, verifies and releases database handles.

    Args:
        enabled:        Drivers users may connect with.  None = all registered.
        profiles:       Store consulted by :meth:`resolve` for ``profile_id``.
        handle_factory: ``(driver, dsn) -> DatabaseHandle``; replaced in tests.
    """

    def __init__(
        self,
        enabled: EnabledDrivers | None = None,
        profiles: ProfileStore | None = None,
        handle_factory: HandleFactory | None = None,
    ) -> None:
        self._enabled = enabled or EnabledDrivers(DialectRegistry.list())
        self._profiles = profiles
        self._handle_factory = handle_factory or create_engine_handle

    @property
    def enabled(self) -> EnabledDrivers:
        return self._enabled

    def resolve(self, request: ConnectRequest) -> tuple[str, str]:
        """Return ``(driver, dsn)`` for *request*.

        A profile id wins over discrete fields, which win over a raw DSN.
        """
        if request.profile_id:
            if self._profiles is None:
                raise ValidationError("no profile store configured")
            profile = self._profiles.get(request.profile_id)
            return profile.driver, profile.dsn

        if not request.driver:
            raise ValidationError("driver is required")
        self._enabled.validate(request.driver)

        if request.has_fields():
            dsn = build_dsn(
                request.driver,
                host=request.host,
                port=request.port,
                user=request.user,
                password=request.password,
                database=request.database,
            )
            return request.driver, dsn
        if request.dsn:
            return request.driver, request.dsn
        raise ValidationError("dsn, connection fields or profile_id required")

    def connect(self, driver: str, dsn: str) -> ActiveConnection:
        """Open a handle and ping it.

        On failure the handle is closed and :class:`DatabaseConnectionError`
        raised; no caller state is touched.
        """
        self._enabled.validate(driver)
        dialect = normalize(driver)
        try:
            handle = self._handle_factory(driver, dsn)
        except WeebaseError:
            raise
        except Exception as exc:
            log.warning("connect_failed", driver=str(dialect), dsn=redact_dsn(dsn), error=str(exc))
            raise DatabaseConnectionError(
                f"connection failed: {exc}", driver=str(dialect), cause=exc
            ) from exc

        try:
            handle.ping()
        except Exception as exc:
            handle.close()
            log.warning("connect_failed", driver=str(dialect), dsn=redact_dsn(dsn), error=str(exc))
            raise DatabaseConnectionError(
                f"connection failed: {exc}", driver=str(dialect), cause=exc
            ) from exc

        conn = ActiveConnection(driver=driver, dialect=dialect, handle=handle, dsn=dsn)
        log.info("connected", driver=str(dialect), connection_id=conn.id, dsn=redact_dsn(dsn))
        return conn

    def open(self, request: ConnectRequest) -> ActiveConnection:
        """:meth:`resolve` then :meth:`connect`."""
        driver, dsn = self.resolve(request)
        return self.connect(driver, dsn)

    @staticmethod
    def disconnect(conn: ActiveConnection | None) -> bool:
        """Release *conn*'s handle. Returns False when there was nothing to do."""
        if conn is None:
            return False
        if conn.closed:
            return False
        conn.closed = True
        conn.handle.close()
        log.info("disconnected", driver=str(conn.dialect), connection_id=conn.id)
        return True
