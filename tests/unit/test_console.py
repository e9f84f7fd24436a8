"""Unit tests — Console facade with mocked handles and executor."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import ProgrammingError

from weebase.config import Settings
from weebase.connections import ActiveConnection, ConnectionManager, Rows
from weebase.console import Console, ExecResult, QueryResult
from weebase.exceptions import (
    ConfigurationError,
    DatabaseConnectionError,
    ExecutionError,
    NotConnectedError,
    SafetyViolation,
    ValidationError,
)
from weebase.logging import _inject_context_vars
from weebase.params import ConnectRequest, DeleteRequest, InsertRequest, UpdateRequest
from weebase.profiles import InMemoryProfileStore
from weebase.safety import SafetyPolicy

DELETE_ONE = DeleteRequest(table="users", key_column="id", key_value=1)
UPDATE_ONE = UpdateRequest(
    table="users", key_column="id", key_value=1, set_columns=["name"], set_values=["x"]
)
INSERT_ONE = InsertRequest(table="users", columns=["name"], values=["x"])


@pytest.fixture
def executor() -> MagicMock:
    mock = MagicMock()
    mock.run.return_value = 1
    mock.insert.return_value = 1
    return mock


@pytest.fixture
def mocked_db(test_settings: Settings, executor: MagicMock) -> Console:
    return Console(test_settings, executor=executor)


@pytest.mark.unit
class TestSafeMode:
    @pytest.mark.parametrize(
        "method,request_obj",
        [("delete_row", DELETE_ONE), ("update_row", UPDATE_ONE), ("insert_row", INSERT_ONE)],
    )
    def test_unconfirmed_mutation_touches_nothing(
        self,
        mocked_db: Console,
        executor: MagicMock,
        mock_conn: ActiveConnection,
        method: str,
        request_obj: object,
    ) -> None:
        with pytest.raises(SafetyViolation, match="confirmation required"):
            getattr(mocked_db, method)(mock_conn, request_obj)
        executor.run.assert_not_called()
        executor.insert.assert_not_called()
        assert mock_conn.handle.mock_calls == []

    def test_confirmed_delete_runs_guarded(
        self, mocked_db: Console, executor: MagicMock, mock_conn: ActiveConnection
    ) -> None:
        result = mocked_db.delete_row(mock_conn, DELETE_ONE, confirmed=True)
        assert result.ok and result.rows_affected == 1 and result.operation == "delete"
        handle, guard, stmt, operation = executor.run.call_args[0]
        assert handle is mock_conn.handle
        assert guard.sql == 'SELECT COUNT(*) FROM "users" WHERE "id" = :p1'
        assert stmt.sql == 'DELETE FROM "users" WHERE "id" = :p1'
        assert operation == "delete"

    def test_safe_mode_off_needs_no_confirmation(
        self, mocked_db: Console, executor: MagicMock, mock_conn: ActiveConnection
    ) -> None:
        mocked_db.update_row(mock_conn, UPDATE_ONE, policy=SafetyPolicy(safe_mode_default=False))
        executor.run.assert_called_once()

    def test_read_only_rejects_confirmed_mutation(
        self, mocked_db: Console, executor: MagicMock, mock_conn: ActiveConnection
    ) -> None:
        with pytest.raises(SafetyViolation, match="read-only mode"):
            mocked_db.delete_row(
                mock_conn, DELETE_ONE, confirmed=True, policy=SafetyPolicy(read_only_mode=True)
            )
        executor.run.assert_not_called()

    def test_closed_connection(self, mocked_db: Console, mock_conn: ActiveConnection) -> None:
        mock_conn.closed = True
        with pytest.raises(NotConnectedError):
            mocked_db.delete_row(mock_conn, DELETE_ONE, confirmed=True)


@pytest.mark.unit
class TestExecuteSql:
    def test_read_only_rejects_delete(self, db: Console, mock_conn: ActiveConnection) -> None:
        with pytest.raises(SafetyViolation, match="read-only mode"):
            db.execute_sql(mock_conn, "DELETE FROM t", policy=SafetyPolicy(read_only_mode=True))
        assert mock_conn.handle.mock_calls == []

    def test_read_only_runs_select(self, db: Console, mock_conn: ActiveConnection) -> None:
        mock_conn.handle.query.return_value = Rows(columns=["1"], rows=[{"1": 1}])
        result = db.execute_sql(mock_conn, "SELECT 1", policy=SafetyPolicy(read_only_mode=True))
        assert isinstance(result, QueryResult)
        assert result.row_count == 1
        stmt = mock_conn.handle.query.call_args[0][0]
        assert stmt.raw and stmt.sql == "SELECT 1"
        assert mock_conn.handle.query.call_args[1]["max_rows"] == db.settings.console.max_rows
        assert mock_conn.handle.query.call_args[1]["read_only"] is True

    @pytest.mark.parametrize(
        "sql",
        [
            "EXPLAIN ANALYZE DELETE FROM t",
            "WITH x AS (SELECT 1) DELETE FROM users",
            "SELECT $$'$$; DELETE FROM t; SELECT $$'$$",
        ],
    )
    def test_read_only_rejects_hidden_writes(
        self, db: Console, mock_conn: ActiveConnection, sql: str
    ) -> None:
        with pytest.raises(SafetyViolation, match="read-only mode"):
            db.execute_sql(mock_conn, sql, policy=SafetyPolicy(read_only_mode=True))
        assert mock_conn.handle.mock_calls == []

    def test_data_modifying_cte_takes_exec_path(
        self, db: Console, mock_conn: ActiveConnection
    ) -> None:
        mock_conn.handle.execute.return_value = 1
        result = db.execute_sql(mock_conn, "WITH x AS (SELECT 1) DELETE FROM users")
        assert isinstance(result, ExecResult)
        mock_conn.handle.query.assert_not_called()

    def test_exec_returns_affected(self, db: Console, mock_conn: ActiveConnection) -> None:
        mock_conn.handle.execute.return_value = 3
        result = db.execute_sql(mock_conn, "UPDATE t SET a = 1")
        assert isinstance(result, ExecResult)
        assert result.rows_affected == 3

    def test_transactional_exec(self, db: Console, mock_conn: ActiveConnection) -> None:
        tx = MagicMock()
        tx.execute.return_value = 2
        mock_conn.handle.transaction.return_value.__enter__.return_value = tx
        result = db.execute_sql(mock_conn, "UPDATE t SET a = 1", transactional=True)
        assert isinstance(result, ExecResult)
        assert result.rows_affected == 2
        mock_conn.handle.execute.assert_not_called()

    def test_drop_blocked_in_safe_mode(self, db: Console, mock_conn: ActiveConnection) -> None:
        with pytest.raises(SafetyViolation, match="DROP"):
            db.execute_sql(mock_conn, "drop table users")

    def test_empty_sql(self, db: Console, mock_conn: ActiveConnection) -> None:
        with pytest.raises(ValidationError, match="sql is required"):
            db.execute_sql(mock_conn, "   ")

    def test_driver_error_wrapped(self, db: Console, mock_conn: ActiveConnection) -> None:
        mock_conn.handle.execute.side_effect = ProgrammingError("x", {}, Exception("syntax error"))
        with pytest.raises(ExecutionError, match="execute_sql failed"):
            db.execute_sql(mock_conn, "UPDATE t SET")


@pytest.mark.unit
class TestExplain:
    def test_gates_inner_statement(self, db: Console, mock_conn: ActiveConnection) -> None:
        with pytest.raises(SafetyViolation):
            db.explain_sql(mock_conn, "DELETE FROM t", policy=SafetyPolicy(read_only_mode=True))
        assert mock_conn.handle.mock_calls == []

    def test_empty_is_validation_error(self, db: Console, mock_conn: ActiveConnection) -> None:
        with pytest.raises(ValidationError):
            db.explain_sql(mock_conn, "")

    def test_builds_plan_statement(self, db: Console, mock_conn: ActiveConnection) -> None:
        mock_conn.handle.query.return_value = Rows(columns=["detail"], rows=[{"detail": "SCAN t"}])
        result = db.explain_sql(mock_conn, "SELECT * FROM t")
        assert result.rows == [{"detail": "SCAN t"}]
        assert mock_conn.handle.query.call_args[0][0].sql == "EXPLAIN QUERY PLAN SELECT * FROM t"


@pytest.mark.unit
class TestReads:
    def test_browse_caps_limit(self, db: Console, mock_conn: ActiveConnection) -> None:
        mock_conn.handle.scalar.return_value = 7
        mock_conn.handle.query.return_value = Rows(columns=["id"], rows=[{"id": 1}])
        page = db.browse_rows(mock_conn, None, "users", limit=100_000, offset=-5)
        assert page.limit == db.settings.console.max_rows
        assert page.offset == 0
        assert page.total == 7
        assert page.columns == ["id"]

    def test_browse_default_limit(self, db: Console, mock_conn: ActiveConnection) -> None:
        mock_conn.handle.scalar.return_value = 0
        mock_conn.handle.query.return_value = Rows(columns=[], rows=[])
        assert db.browse_rows(mock_conn, None, "users").limit == db.settings.console.browse_limit

    def test_list_tables_clamps_limit(self, db: Console, mock_conn: ActiveConnection) -> None:
        mock_conn.handle.query.return_value = Rows(columns=["name"], rows=[{"name": "users"}])
        assert db.list_tables(mock_conn, limit=999_999, offset=-1) == ["users"]
        stmt = mock_conn.handle.query.call_args[0][0]
        assert stmt.params["p1"] == db.settings.console.tables_limit
        assert stmt.params["p2"] == 0

    def test_not_connected(self, db: Console) -> None:
        with pytest.raises(NotConnectedError):
            db.list_schemas(None)  # type: ignore[arg-type]

    def test_driver_error_wrapped(self, db: Console, mock_conn: ActiveConnection) -> None:
        mock_conn.handle.query.side_effect = ProgrammingError("x", {}, Exception("no such table"))
        with pytest.raises(ExecutionError, match="table_info failed"):
            db.table_info(mock_conn, None, "ghost")

    def test_view_definition_mysql_second_column(self, db: Console, mock_conn: ActiveConnection) -> None:
        mock_conn.driver, mock_conn.dialect = "mysql", "mysql"
        mock_conn.handle.query.return_value = Rows(
            columns=["View", "Create View"],
            rows=[{"View": "v", "Create View": "CREATE VIEW v AS SELECT 1"}],
        )
        assert db.view_definition(mock_conn, "app", "v") == "CREATE VIEW v AS SELECT 1"

    def test_view_definition_empty(self, db: Console, mock_conn: ActiveConnection) -> None:
        mock_conn.handle.query.return_value = Rows(columns=["sql"], rows=[])
        assert db.view_definition(mock_conn, None, "v") == "<empty>"

    def test_list_databases(self, db: Console, mock_conn: ActiveConnection) -> None:
        mock_conn.handle.query.return_value = Rows(
            columns=["Database"], rows=[{"Database": "app"}, {"Database": "shop"}]
        )
        assert db.list_databases(mock_conn) == ["app", "shop"]

    def test_view_row_requires_key(self, db: Console, mock_conn: ActiveConnection) -> None:
        with pytest.raises(ValidationError, match="key_value is required"):
            db.view_row(mock_conn, None, "users", "id", " ")


@pytest.mark.unit
class TestSessionsAndProfiles:
    def test_connect_attaches_and_replaces(self, test_settings: Settings) -> None:
        handles = [MagicMock(), MagicMock()]
        manager = ConnectionManager(
            profiles=InMemoryProfileStore(), handle_factory=lambda d, s: handles.pop(0)
        )
        db = Console(test_settings, manager=manager)
        first = db.connect(ConnectRequest(driver="sqlite", dsn="a.db"), session_id="s1")
        second = db.connect(ConnectRequest(driver="sqlite", dsn="b.db"), session_id="s1")
        assert db.active("s1").id == second.connection_id
        assert first.connection is not None and first.connection.closed
        assert db.disconnect("s1") is True
        assert db.disconnect("s1") is False
        with pytest.raises(NotConnectedError):
            db.active("s1")

    def test_disconnect_clears_log_context(self, test_settings: Settings) -> None:
        manager = ConnectionManager(handle_factory=lambda d, s: MagicMock())
        db = Console(test_settings, manager=manager)
        db.connect(ConnectRequest(driver="sqlite", dsn="a.db"), session_id="s1")
        assert _inject_context_vars(None, "info", {})["session_id"] == "s1"
        db.disconnect("s1")
        assert _inject_context_vars(None, "info", {}) == {}

    def test_failed_connect_keeps_session(self, test_settings: Settings) -> None:
        bad = MagicMock()
        bad.ping.side_effect = RuntimeError("refused")
        handles = [MagicMock(), bad]
        manager = ConnectionManager(handle_factory=lambda d, s: handles.pop(0))
        db = Console(test_settings, manager=manager)
        good = db.connect(ConnectRequest(driver="sqlite", dsn="a.db"), session_id="s1")
        with pytest.raises(DatabaseConnectionError):
            db.connect(ConnectRequest(driver="sqlite", dsn="b.db"), session_id="s1")
        assert db.active("s1").id == good.connection_id

    def test_save_profile_validates(self, db: Console) -> None:
        with pytest.raises(ValidationError):
            db.save_profile("x", "", "a.db")
        with pytest.raises(ConfigurationError):
            db.save_profile("x", "oracle", "a.db")
        saved = db.save_profile(" local ", "sqlite", "a.db")
        assert saved.name == "local"
        assert db.list_profiles() == [saved]

    def test_drivers(self, db: Console) -> None:
        assert db.drivers() == ["mysql", "postgres", "sqlite", "sqlserver"]
