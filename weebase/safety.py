"""Safety gates and the count-checked mutation executor.

Order of checks for a row mutation::

    read-only?  ──yes──▶ SafetyViolation          (no I/O)
    safe mode and not confirmed? ──yes──▶ SafetyViolation   (no I/O)
    BEGIN
      SELECT COUNT(*) … WHERE <same predicate>
      count != 1 ──▶ ROLLBACK, SafetyViolation
      UPDATE / DELETE
    COMMIT

Ad-hoc SQL is tokenized with sqlparse and classified by its leading keyword.
Read-only mode allows only SELECT-like text with no data-modifying keyword
anywhere in it (a CTE ending in DELETE is a write); safe mode blocks DROP /
ALTER / TRUNCATE outright.  ``EXPLAIN`` is judged by the statement it wraps.
Text containing several statements is checked statement by statement.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterator

import sqlparse
from sqlalchemy.exc import SQLAlchemyError
from sqlparse import tokens as T

from weebase.exceptions import ExecutionError, SafetyViolation
from weebase.logging import get_logger
from weebase.statements import Statement

if TYPE_CHECKING:
    from weebase.config import Settings
    from weebase.connections import DatabaseHandle

log = get_logger(__name__)

QUERY_KEYWORDS = frozenset({"SELECT", "WITH", "SHOW", "PRAGMA", "EXPLAIN", "DESCRIBE", "DESC", "VALUES"})
READ_ONLY_KEYWORDS = frozenset({"SELECT", "WITH", "SHOW", "PRAGMA", "EXPLAIN"})
DESTRUCTIVE_KEYWORDS = frozenset({"DROP", "ALTER", "TRUNCATE"})
WRITE_KEYWORDS = frozenset(
    {"INSERT", "UPDATE", "DELETE", "MERGE", "UPSERT", "CREATE", "GRANT", "REVOKE"}
) | DESTRUCTIVE_KEYWORDS
MUTATION_TYPES = frozenset({"INSERT", "UPDATE", "DELETE", "MERGE", "UPSERT", "REPLACE"})

_STATEMENT_TTYPES = (T.Keyword.DML, T.Keyword.DDL, T.Keyword.CTE)


class StatementKind(str, Enum):
    QUERY = "query"
    EXEC = "exec"


@dataclass(frozen=True)
class SafetyPolicy:
    safe_mode_default: bool = True
    read_only_mode: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> SafetyPolicy:
        return cls(
            safe_mode_default=settings.safety.safe_mode_default,
            read_only_mode=settings.safety.read_only_mode,
        )


# ---------------------------------------------------------------------------
# Lexing
# ---------------------------------------------------------------------------


def _parse(sql: str) -> sqlparse.sql.Statement | None:
    parsed = sqlparse.parse(sql)
    return parsed[0] if parsed else None


def _tokens(sql: str) -> Iterator[sqlparse.sql.Token]:
    """Leaf tokens of the first statement in *sql*, minus whitespace and comments."""
    stmt = _parse(sql)
    if stmt is None:
        return
    for token in stmt.flatten():
        if token.is_whitespace or token.ttype in T.Comment:
            continue
        yield token


def split_statements(sql: str) -> list[str]:
    """Split *sql* into statements, dropping empty ones."""
    return [part for part in sqlparse.split(sql) if leading_keyword(part)]


def leading_keyword(sql: str) -> str:
    """First keyword of *sql*, upper-cased, after comments and opening parens."""
    for token in _tokens(sql):
        if token.ttype in T.Punctuation and token.value == "(":
            continue
        if token.ttype in T.Keyword or token.ttype in T.Name:
            return token.value.upper()
        return ""
    return ""


def explained_statement(sql: str) -> str:
    """The statement an ``EXPLAIN`` wraps, or ``""`` if *sql* is not one."""
    if leading_keyword(sql) != "EXPLAIN":
        return ""
    stmt = _parse(sql)
    flat = list(stmt.flatten()) if stmt is not None else []
    for i, token in enumerate(flat):
        if token.ttype in _STATEMENT_TTYPES:
            return "".join(t.value for t in flat[i:])
    return ""


def _keywords(sql: str) -> set[str]:
    return {t.normalized for t in _tokens(sql) if t.ttype in T.Keyword}


def classify(sql: str) -> StatementKind:
    """QUERY for row-producing text, EXEC for everything else.

    A data-modifying CTE (``WITH … DELETE``) is EXEC.
    """
    stmt = _parse(sql)
    if stmt is None:
        return StatementKind.EXEC
    if stmt.get_type() in MUTATION_TYPES:
        return StatementKind.EXEC
    return StatementKind.QUERY if leading_keyword(sql) in QUERY_KEYWORDS else StatementKind.EXEC


def _readings(sql: str) -> list[str]:
    # mysql escapes quotes with a backslash, standard SQL does not; gate both.
    parts = split_statements(sql)
    if "\\" in sql:
        parts += split_statements(sql.replace("\\", " "))
    return parts


# ---------------------------------------------------------------------------
# Gates
# ---------------------------------------------------------------------------


def _read_only_violation(part: str) -> str | None:
    """The keyword that makes *part* a write, or None."""
    inner = explained_statement(part)
    if inner:
        return _read_only_violation(inner)
    keyword = leading_keyword(part)
    if keyword not in READ_ONLY_KEYWORDS:
        return keyword or "<empty>"
    writes = _keywords(part) & WRITE_KEYWORDS
    return min(writes) if writes else None


def check_read_only(policy: SafetyPolicy, sql: str) -> None:
    if not policy.read_only_mode:
        return
    for part in _readings(sql) or [sql]:
        keyword = _read_only_violation(part)
        if keyword is not None:
            log.warning("mutation_blocked", reason="read_only", keyword=keyword)
            raise SafetyViolation(
                "read-only mode: only SELECT-like statements are allowed",
                operation="execute_sql",
            )


def check_destructive(policy: SafetyPolicy, sql: str) -> None:
    if not policy.safe_mode_default:
        return
    for part in _readings(sql):
        keyword = leading_keyword(explained_statement(part) or part)
        if keyword in DESTRUCTIVE_KEYWORDS:
            log.warning("mutation_blocked", reason="safe_mode", keyword=keyword)
            raise SafetyViolation(
                f"blocked by safe mode: {keyword} statements are not allowed",
                operation="execute_sql",
            )


def check_writable(policy: SafetyPolicy, operation: str) -> None:
    """Reject row mutations and DDL builders in read-only mode."""
    if policy.read_only_mode:
        log.warning("mutation_blocked", reason="read_only", operation=operation)
        raise SafetyViolation(
            f"read-only mode: {operation} is not allowed", operation=operation
        )


def require_confirmation(policy: SafetyPolicy, confirmed: bool, operation: str) -> None:
    if policy.safe_mode_default and not confirmed:
        log.warning("mutation_blocked", reason="confirmation_required", operation=operation)
        raise SafetyViolation(
            "confirmation required (safe mode is on)", operation=operation
        )


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


class MutationExecutor:
    """Runs row mutations inside a single transaction."""

    def run(
        self,
        handle: DatabaseHandle,
        guard: Statement,
        mutation: Statement,
        operation: str,
    ) -> int:
        """Execute *mutation* only if *guard* counts exactly one row.

        Returns the driver-reported affected row count.
        """
        try:
            with handle.transaction() as tx:
                count = int(tx.scalar(guard) or 0)
                if count != 1:
                    raise SafetyViolation(
                        f"refusing to {operation}: match count ({count}) != 1",
                        operation=operation,
                        matched_rows=count,
                    )
                affected = tx.execute(mutation)
        except SafetyViolation as exc:
            log.warning("mutation_rolled_back", operation=operation, matched_rows=exc.matched_rows)
            raise
        except SQLAlchemyError as exc:
            log.warning("mutation_rolled_back", operation=operation, error=str(exc))
            raise ExecutionError(operation, exc) from exc
        log.info("mutation_committed", operation=operation, rows_affected=affected)
        return affected

    def insert(self, handle: DatabaseHandle, stmt: Statement, operation: str = "insert") -> int:
        """Execute *stmt* in its own transaction, without a count guard."""
        try:
            with handle.transaction() as tx:
                affected = tx.execute(stmt)
        except SQLAlchemyError as exc:
            log.warning("mutation_rolled_back", operation=operation, error=str(exc))
            raise ExecutionError(operation, exc) from exc
        log.info("mutation_committed", operation=operation, rows_affected=affected)
        return affected

