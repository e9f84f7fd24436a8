"""Console facade.

The operations a front end (web handler, CLI) calls.  Each takes an
:class:`ActiveConnection` plus already-parsed parameters and returns a plain
result object or raises a :class:`weebase.exceptions.WeebaseError`.

Usage::

    console = Console.from_settings(Settings.load())
    result = console.connect(ConnectRequest(driver="sqlite", dsn="app.db"), session_id="s1")
    conn = console.active("s1")
    console.browse_rows(conn, None, "users", limit=20)
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Sequence

from sqlalchemy.exc import SQLAlchemyError

from weebase.config import Settings, get_settings
from weebase.connections import ActiveConnection, ConnectionManager
from weebase.dialects import Dialect, EnabledDrivers
from weebase.exceptions import ExecutionError, NotConnectedError, ValidationError
from weebase.logging import bind_request_context, clear_request_context, get_logger
from weebase.params import ColumnSpec, ConnectRequest, DeleteRequest, InsertRequest, UpdateRequest
from weebase.profiles import ConnectionProfile, ProfileStore, build_profile_store
from weebase.safety import (
    MutationExecutor,
    SafetyPolicy,
    StatementKind,
    check_destructive,
    check_read_only,
    check_writable,
    classify,
    require_confirmation,
)
from weebase.sessions import InMemorySessionStore, SessionStore
from weebase.statements import (
    Statement,
    build_browse,
    build_count,
    build_count_all,
    build_create_table,
    build_delete,
    build_explain,
    build_insert,
    build_list_databases,
    build_list_schemas,
    build_list_tables,
    build_table_info,
    build_update,
    build_view_definition,
    build_view_row,
)

log = get_logger(__name__)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass
class ColumnMeta:
    name: str
    data_type: str
    nullable: bool
    default: Any = None
    primary_key: bool = False


@dataclass
class BrowseResult:
    rows: list[dict[str, Any]]
    total: int
    limit: int
    offset: int
    columns: list[str] = field(default_factory=list)


@dataclass
class QueryResult:
    columns: list[str]
    rows: list[dict[str, Any]]
    row_count: int
    truncated: bool
    elapsed_ms: float


@dataclass
class ExecResult:
    rows_affected: int
    elapsed_ms: float


@dataclass
class MutationResult:
    ok: bool
    rows_affected: int
    operation: str


@dataclass
class ConnectResult:
    connection_id: str
    driver: str
    dialect: str
    session_id: str | None = None
    connection: ActiveConnection | None = field(default=None, repr=False)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


# ---------------------------------------------------------------------------
# Console
# ---------------------------------------------------------------------------


class Console:
    """Entry point for every console operation.

    Args:
        settings: Loaded settings.  Defaults to :func:`get_settings`.
        sessions: Session store.  Defaults to an in-memory store.
        profiles: Profile store.  Defaults to ``settings.profiles.path``.
        manager:  Connection manager.  Built from settings when omitted.
        executor: Mutation executor.  Replaced in tests.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        sessions: SessionStore | None = None,
        profiles: ProfileStore | None = None,
        manager: ConnectionManager | None = None,
        executor: MutationExecutor | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.policy = SafetyPolicy.from_settings(self.settings)
        self.sessions: SessionStore = sessions or InMemorySessionStore()
        self.profiles: ProfileStore = profiles or build_profile_store(self.settings.profiles.path)
        self.manager = manager or ConnectionManager(
            enabled=EnabledDrivers(self.settings.drivers.enabled),
            profiles=self.profiles,
        )
        self.executor = executor or MutationExecutor()

    @classmethod
    def from_settings(cls, settings: Settings) -> Console:
        return cls(settings)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def drivers(self) -> list[str]:
        return self.manager.enabled.list()

    def connect(
        self, request: ConnectRequest, *, session_id: str | None = None
    ) -> ConnectResult:
        """Resolve, open and ping; then install on *session_id* if given.

        A failed connect leaves the session's current connection in place.
        """
        conn = self.manager.open(request)
        if session_id is not None:
            bind_request_context(session_id=session_id, connection_id=conn.id)
            self.sessions.attach(session_id, conn)
        return ConnectResult(
            connection_id=conn.id,
            driver=conn.driver,
            dialect=str(conn.dialect),
            session_id=session_id,
            connection=conn,
        )

    def disconnect(self, target: str | ActiveConnection | None) -> bool:
        """Close a session's connection (by session id) or a connection. Idempotent."""
        if isinstance(target, str):
            closed = self.sessions.detach(target) is not None
            clear_request_context()
            return closed
        return self.manager.disconnect(target)

    def active(self, session_id: str) -> ActiveConnection:
        conn = self.sessions.get(session_id)
        if conn is None or conn.closed:
            raise NotConnectedError()
        bind_request_context(session_id=session_id, connection_id=conn.id)
        return conn

    def expire_sessions(self) -> list[str]:
        return self.sessions.expire(self.settings.sessions.idle_timeout_seconds)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------

    def save_profile(self, name: str, driver: str, dsn: str) -> ConnectionProfile:
        name, driver, dsn = (name or "").strip(), (driver or "").strip(), (dsn or "").strip()
        if not name or not driver or not dsn:
            raise ValidationError("name, driver and dsn are required")
        self.manager.enabled.validate(driver)
        profile = self.profiles.save(ConnectionProfile(name=name, driver=driver, dsn=dsn))
        log.info("profile_saved", profile_id=profile.id, driver=driver)
        return profile

    def list_profiles(self) -> list[ConnectionProfile]:
        return self.profiles.list()

    # ------------------------------------------------------------------
    # Introspection and reads
    # ------------------------------------------------------------------

    @contextmanager
    def _reading(self, conn: ActiveConnection, operation: str) -> Iterator[None]:
        if conn is None or conn.closed:
            raise NotConnectedError()
        conn.touch()
        try:
            yield
        except SQLAlchemyError as exc:
            raise ExecutionError(operation, exc) from exc

    def list_databases(self, conn: ActiveConnection) -> list[str]:
        """Databases on the server; sqlite only has ``main``."""
        with self._reading(conn, "list_databases"):
            stmt = build_list_databases(conn.driver)
            rows = conn.handle.query(stmt)
        return [str(next(iter(r.values()))) for r in rows.rows]

    def list_schemas(self, conn: ActiveConnection) -> list[str]:
        with self._reading(conn, "list_schemas"):
            stmt = build_list_schemas(conn.driver)
            rows = conn.handle.query(stmt)
        return [str(next(iter(r.values()))) for r in rows.rows]

    def list_tables(
        self,
        conn: ActiveConnection,
        schema: str | None = None,
        search: str | None = None,
        include_views: bool = False,
        limit: int | None = None,
        offset: int | None = 0,
    ) -> list[str]:
        cfg = self.settings.console
        if limit is None or not (0 < limit <= cfg.tables_limit_max):
            limit = cfg.tables_limit
        if offset is None or offset < 0:
            offset = 0
        with self._reading(conn, "list_tables"):
            stmt = build_list_tables(conn.driver, schema, search, include_views, limit, offset)
            rows = conn.handle.query(stmt)
        return [str(r["name"]) for r in rows.rows]

    def table_info(self, conn: ActiveConnection, schema: str | None, table: str) -> list[ColumnMeta]:
        with self._reading(conn, "table_info"):
            stmt = build_table_info(conn.driver, schema, table)
            rows = conn.handle.query(stmt)
        return [
            ColumnMeta(
                name=str(r["name"]),
                data_type=str(r["data_type"] or ""),
                nullable=str(r["is_nullable"]).upper() == "YES",
                default=r["column_default"],
                primary_key=bool(r["is_pk"]),
            )
            for r in rows.rows
        ]

    def view_definition(self, conn: ActiveConnection, schema: str | None, view: str) -> str:
        with self._reading(conn, "view_definition"):
            stmt = build_view_definition(conn.driver, schema, view)
            rows = conn.handle.query(stmt, max_rows=1)
        definition = ""
        if rows.rows:
            values = list(rows.rows[0].values())
            index = 1 if conn.dialect == Dialect.MYSQL and len(values) > 1 else 0
            definition = str(values[index] or "")
        return definition if definition.strip() else "<empty>"

    def browse_rows(
        self,
        conn: ActiveConnection,
        schema: str | None,
        table: str,
        limit: int | None = None,
        offset: int | None = 0,
    ) -> BrowseResult:
        cfg = self.settings.console
        if limit is None or limit <= 0:
            limit = cfg.browse_limit
        limit = min(limit, cfg.max_rows)
        if offset is None or offset < 0:
            offset = 0
        with self._reading(conn, "browse_rows"):
            stmt = build_browse(conn.driver, schema, table, limit, offset)
            count = build_count_all(conn.driver, schema, table)
            total = int(conn.handle.scalar(count) or 0)
            rows = conn.handle.query(stmt)
        return BrowseResult(
            rows=rows.rows, total=total, limit=limit, offset=offset, columns=rows.columns
        )

    def view_row(
        self,
        conn: ActiveConnection,
        schema: str | None,
        table: str,
        key_column: str,
        key_value: Any,
    ) -> dict[str, Any] | None:
        if key_value is None or (isinstance(key_value, str) and not key_value.strip()):
            raise ValidationError("key_value is required")
        with self._reading(conn, "view_row"):
            stmt = build_view_row(conn.driver, schema, table, key_column, key_value)
            rows = conn.handle.query(stmt, max_rows=1)
        return rows.rows[0] if rows.rows else None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _gate(
        self, conn: ActiveConnection, policy: SafetyPolicy | None, confirmed: bool, operation: str
    ) -> None:
        if conn is None or conn.closed:
            raise NotConnectedError()
        policy = policy or self.policy
        check_writable(policy, operation)
        require_confirmation(policy, confirmed, operation)
        conn.touch()

    def insert_row(
        self,
        conn: ActiveConnection,
        request: InsertRequest,
        *,
        confirmed: bool = False,
        policy: SafetyPolicy | None = None,
    ) -> MutationResult:
        self._gate(conn, policy, confirmed, "insert")
        stmt = build_insert(
            conn.driver, request.schema_name, request.table, request.columns, request.values
        )
        affected = self.executor.insert(conn.handle, stmt)
        return MutationResult(ok=True, rows_affected=affected, operation="insert")

    def update_row(
        self,
        conn: ActiveConnection,
        request: UpdateRequest,
        *,
        confirmed: bool = False,
        policy: SafetyPolicy | None = None,
    ) -> MutationResult:
        self._gate(conn, policy, confirmed, "update")
        guard = build_count(
            conn.driver, request.schema_name, request.table, request.key_column, request.key_value
        )
        stmt = build_update(
            conn.driver,
            request.schema_name,
            request.table,
            request.key_column,
            request.key_value,
            request.set_columns,
            request.set_values,
        )
        affected = self.executor.run(conn.handle, guard, stmt, "update")
        return MutationResult(ok=True, rows_affected=affected, operation="update")

    def delete_row(
        self,
        conn: ActiveConnection,
        request: DeleteRequest,
        *,
        confirmed: bool = False,
        policy: SafetyPolicy | None = None,
    ) -> MutationResult:
        self._gate(conn, policy, confirmed, "delete")
        guard = build_count(
            conn.driver, request.schema_name, request.table, request.key_column, request.key_value
        )
        stmt = build_delete(
            conn.driver, request.schema_name, request.table, request.key_column, request.key_value
        )
        affected = self.executor.run(conn.handle, guard, stmt, "delete")
        return MutationResult(ok=True, rows_affected=affected, operation="delete")

    def create_table(
        self,
        conn: ActiveConnection,
        schema: str | None,
        table: str,
        columns: Sequence[ColumnSpec | dict[str, Any]],
        *,
        policy: SafetyPolicy | None = None,
    ) -> str:
        """Build and run ``CREATE TABLE``; returns the SQL that was executed."""
        if conn is None or conn.closed:
            raise NotConnectedError()
        check_writable(policy or self.policy, "create_table")
        stmt = build_create_table(conn.driver, schema, table, columns)
        conn.touch()
        self.executor.insert(conn.handle, stmt, operation="create_table")
        log.info("table_created", table=table, schema=schema or None)
        return stmt.sql

    # ------------------------------------------------------------------
    # SQL console
    # ------------------------------------------------------------------

    def execute_sql(
        self,
        conn: ActiveConnection,
        sql: str,
        *,
        transactional: bool = False,
        policy: SafetyPolicy | None = None,
    ) -> QueryResult | ExecResult:
        """Run ad-hoc SQL.

        SELECT-like text returns rows (capped at ``console.max_rows``);
        anything else returns the affected row count.
        """
        text = (sql or "").strip()
        if not text:
            raise ValidationError("sql is required")
        if conn is None or conn.closed:
            raise NotConnectedError()
        policy = policy or self.policy
        check_read_only(policy, text)
        check_destructive(policy, text)

        stmt = Statement(text, raw=True)
        kind = classify(text)
        conn.touch()
        start = time.perf_counter()
        try:
            if kind is StatementKind.QUERY:
                rows = conn.handle.query(
                    stmt,
                    max_rows=self.settings.console.max_rows,
                    read_only=policy.read_only_mode,
                )
                result: QueryResult | ExecResult = QueryResult(
                    columns=rows.columns,
                    rows=rows.rows,
                    row_count=len(rows.rows),
                    truncated=rows.truncated,
                    elapsed_ms=_elapsed_ms(start),
                )
            elif transactional:
                with conn.handle.transaction() as tx:
                    affected = tx.execute(stmt)
                result = ExecResult(rows_affected=affected, elapsed_ms=_elapsed_ms(start))
            else:
                affected = conn.handle.execute(stmt)
                result = ExecResult(rows_affected=affected, elapsed_ms=_elapsed_ms(start))
        except SQLAlchemyError as exc:
            log.warning("sql_failed", kind=kind.value, error=str(exc))
            raise ExecutionError("execute_sql", exc) from exc

        log.info("sql_executed", kind=kind.value, elapsed_ms=result.elapsed_ms)
        return result

    def explain_sql(
        self,
        conn: ActiveConnection,
        sql: str,
        *,
        format_json: bool = False,
        policy: SafetyPolicy | None = None,
    ) -> QueryResult:
        if not (sql or "").strip():
            raise ValidationError("sql is required")
        # EXPLAIN ANALYZE runs the statement, so the inner text is gated too.
        policy = policy or self.policy
        check_read_only(policy, sql)
        check_destructive(policy, sql)
        start = time.perf_counter()
        with self._reading(conn, "explain_sql"):
            stmt = build_explain(conn.driver, sql, format_json=format_json)
            rows = conn.handle.query(
                stmt, max_rows=self.settings.console.max_rows, read_only=policy.read_only_mode
            )
        return QueryResult(
            columns=rows.columns,
            rows=rows.rows,
            row_count=len(rows.rows),
            truncated=rows.truncated,
            elapsed_ms=_elapsed_ms(start),
        )
