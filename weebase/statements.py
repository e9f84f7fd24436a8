"""Statement builder.

Every function here is pure: it validates identifiers, quotes them for the
target dialect and returns a :class:`Statement` whose values are bound as
named parameters (``:p1``, ``:p2`` …).  Nothing is executed.

Values are never interpolated.  The only exceptions are the integer LIMIT /
OFFSET / TOP of :func:`build_browse`, which are coerced with ``int()`` first.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from weebase.dialects import Dialect, normalize, require_dialect
from weebase.exceptions import ValidationError
from weebase.identifiers import ensure_identifier, qualify, quote_identifier
from weebase.params import ColumnSpec


@dataclass(frozen=True)
class Statement:
    """SQL text plus its bound parameters.

    ``raw`` statements carry user-supplied SQL and must be sent to the driver
    as-is (no ``:name`` bind parsing).
    """

    sql: str
    params: dict[str, Any] = field(default_factory=dict)
    raw: bool = False

    def __str__(self) -> str:
        return self.sql


class _Binds:
    """Hands out ``:p1``, ``:p2`` … placeholders in order."""

    def __init__(self) -> None:
        self.params: dict[str, Any] = {}

    def __call__(self, value: Any) -> str:
        name = f"p{len(self.params) + 1}"
        self.params[name] = value
        return f":{name}"


def _require(value: str | None, what: str) -> str:
    value = (value or "").strip()
    if not value:
        raise ValidationError(f"{what} is required")
    return value


def _target(driver: str, schema: str | None, table: str) -> str:
    return qualify(driver, (schema or "").strip() or None, _require(table, "table"))


def _column(driver: str, name: str) -> str:
    return quote_identifier(driver, ensure_identifier(_require(name, "column"), kind="column"))


def _non_negative(value: Any, what: str, *, minimum: int = 0) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{what} must be an integer", context={what: value}) from exc
    if n < minimum:
        raise ValidationError(f"{what} must be >= {minimum}", context={what: value})
    return n


# ---------------------------------------------------------------------------
# CREATE TABLE
# ---------------------------------------------------------------------------


def _column_def(dialect: Dialect | str, col: ColumnSpec, sole_pk: bool) -> str:
    qc = _column(dialect, col.name)
    typ = col.rendered_type()

    if dialect == Dialect.POSTGRES:
        if col.auto_increment:
            typ = "bigserial" if "big" in col.base_type.lower() else "serial"
        out = f"{qc} {typ}"
        if not col.nullable and not col.auto_increment:
            out += " NOT NULL"
        return out

    if dialect == Dialect.MYSQL:
        out = f"{qc} {typ}"
        if not col.nullable:
            out += " NOT NULL"
        if col.auto_increment:
            out += " AUTO_INCREMENT"
        return out

    if dialect == Dialect.SQLITE:
        if col.auto_increment:
            if not (col.primary_key and sole_pk):
                raise ValidationError(
                    f"sqlite AUTOINCREMENT requires {col.name!r} to be the only primary key column",
                    context={"column": col.name},
                )
            return f"{qc} INTEGER PRIMARY KEY AUTOINCREMENT"
        out = f"{qc} {typ}"
        if col.primary_key and sole_pk:
            out += " PRIMARY KEY"
        elif not col.nullable:
            out += " NOT NULL"
        return out

    if dialect == Dialect.SQLSERVER:
        out = f"{qc} {typ}"
        if col.auto_increment:
            out += " IDENTITY(1,1)"
        if not col.nullable:
            out += " NOT NULL"
        return out

    out = f"{qc} {typ}"
    if not col.nullable:
        out += " NOT NULL"
    return out


def build_create_table(
    driver: str,
    schema: str | None,
    table: str,
    columns: Sequence[ColumnSpec | dict[str, Any]],
) -> Statement:
    """Render ``CREATE TABLE`` with one definition line per column.

    Columns with a blank name are skipped.  A trailing ``PRIMARY KEY (…)``
    clause is added for every dialect except sqlite with a single key
    column, where the key is declared inline.
    """
    dialect = normalize(driver)
    qtable = _target(driver, schema, table)

    specs = [c if isinstance(c, ColumnSpec) else ColumnSpec.model_validate(c) for c in columns]
    specs = [c for c in specs if c.name]
    if not specs:
        raise ValidationError("at least one column required")

    pk_cols = [c for c in specs if c.primary_key]
    sole_pk = len(pk_cols) == 1
    defs = [_column_def(dialect, c, sole_pk) for c in specs]

    if pk_cols and not (dialect == Dialect.SQLITE and sole_pk):
        defs.append(
            "PRIMARY KEY (" + ", ".join(_column(dialect, c.name) for c in pk_cols) + ")"
        )

    return Statement("CREATE TABLE " + qtable + " (\n  " + ",\n  ".join(defs) + "\n)")


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def build_browse(driver: str, schema: str | None, table: str, limit: Any, offset: Any) -> Statement:
    """Paginated ``SELECT *``.

    SQL Server gets ``TOP (n)`` and ignores *offset*: ``OFFSET … FETCH``
    needs an ORDER BY that a generic browse cannot supply.
    """
    qtable = _target(driver, schema, table)
    n = _non_negative(limit, "limit", minimum=1)
    m = _non_negative(offset, "offset")
    if normalize(driver) == Dialect.SQLSERVER:
        return Statement(f"SELECT TOP ({n}) * FROM {qtable}")
    return Statement(f"SELECT * FROM {qtable} LIMIT {n} OFFSET {m}")


def build_count_all(driver: str, schema: str | None, table: str) -> Statement:
    return Statement(f"SELECT COUNT(*) FROM {_target(driver, schema, table)}")


def build_count(
    driver: str, schema: str | None, table: str, key_column: str, key_value: Any
) -> Statement:
    """``COUNT(*)`` guard using the same predicate as UPDATE / DELETE."""
    binds = _Binds()
    sql = (
        f"SELECT COUNT(*) FROM {_target(driver, schema, table)} "
        f"WHERE {_column(driver, key_column)} = {binds(key_value)}"
    )
    return Statement(sql, binds.params)


def build_view_row(
    driver: str, schema: str | None, table: str, key_column: str, key_value: Any
) -> Statement:
    binds = _Binds()
    sql = (
        f"SELECT * FROM {_target(driver, schema, table)} "
        f"WHERE {_column(driver, key_column)} = {binds(key_value)}"
    )
    return Statement(sql, binds.params)


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


def build_insert(
    driver: str,
    schema: str | None,
    table: str,
    columns: Sequence[str],
    values: Sequence[Any],
) -> Statement:
    qtable = _target(driver, schema, table)
    if not columns:
        raise ValidationError("at least one column required")
    if len(columns) != len(values):
        raise ValidationError("columns and values length mismatch")
    binds = _Binds()
    qcols = [_column(driver, c) for c in columns]
    placeholders = [binds(v) for v in values]
    sql = f"INSERT INTO {qtable} ({', '.join(qcols)}) VALUES ({', '.join(placeholders)})"
    return Statement(sql, binds.params)


def build_update(
    driver: str,
    schema: str | None,
    table: str,
    key_column: str,
    key_value: Any,
    set_columns: Sequence[str],
    set_values: Sequence[Any],
) -> Statement:
    qtable = _target(driver, schema, table)
    if not set_columns:
        raise ValidationError("at least one column required")
    if len(set_columns) != len(set_values):
        raise ValidationError("set columns and values length mismatch")
    binds = _Binds()
    sets = [f"{_column(driver, c)} = {binds(v)}" for c, v in zip(set_columns, set_values)]
    sql = f"UPDATE {qtable} SET {', '.join(sets)} WHERE {_column(driver, key_column)} = {binds(key_value)}"
    return Statement(sql, binds.params)


def build_delete(
    driver: str, schema: str | None, table: str, key_column: str, key_value: Any
) -> Statement:
    """Single-row DELETE.

    MySQL gets ``LIMIT 1`` and SQL Server ``TOP (1)``.  These hints do not
    replace the COUNT guard run by :class:`weebase.safety.MutationExecutor`.
    """
    qtable = _target(driver, schema, table)
    binds = _Binds()
    where = f"{_column(driver, key_column)} = {binds(key_value)}"
    dialect = normalize(driver)
    if dialect == Dialect.MYSQL:
        sql = f"DELETE FROM {qtable} WHERE {where} LIMIT 1"
    elif dialect == Dialect.SQLSERVER:
        sql = f"DELETE TOP (1) FROM {qtable} WHERE {where}"
    else:
        sql = f"DELETE FROM {qtable} WHERE {where}"
    return Statement(sql, binds.params)


# ---------------------------------------------------------------------------
# EXPLAIN
# ---------------------------------------------------------------------------


def build_explain(driver: str, sql: str, *, format_json: bool = False) -> Statement:
    """Wrap *sql* in the dialect's plan statement.

    SQL Server has no EXPLAIN; the statement is bracketed by
    ``SET SHOWPLAN_XML ON/OFF`` instead.
    """
    text = (sql or "").strip().rstrip(";").strip()
    if not text:
        raise ValidationError("sql is required")
    dialect = normalize(driver)
    if dialect == Dialect.SQLITE:
        out = f"EXPLAIN QUERY PLAN {text}"
    elif dialect == Dialect.SQLSERVER:
        out = f"SET SHOWPLAN_XML ON;\n{text}\nSET SHOWPLAN_XML OFF;"
    elif dialect == Dialect.POSTGRES and format_json:
        out = f"EXPLAIN (FORMAT JSON) {text}"
    elif dialect == Dialect.MYSQL and format_json:
        out = f"EXPLAIN FORMAT=JSON {text}"
    else:
        out = f"EXPLAIN {text}"
    return Statement(out, raw=True)


# ---------------------------------------------------------------------------
# Introspection
# ---------------------------------------------------------------------------


def build_list_schemas(driver: str) -> Statement:
    dialect = require_dialect(driver, "schema listing")
    if dialect == Dialect.POSTGRES:
        return Statement(
            "SELECT schema_name AS name FROM information_schema.schemata "
            "WHERE schema_name NOT IN ('pg_catalog', 'information_schema', 'pg_toast') "
            "ORDER BY name"
        )
    if dialect == Dialect.MYSQL:
        return Statement(
            "SELECT schema_name AS name FROM information_schema.schemata ORDER BY name"
        )
    if dialect == Dialect.SQLITE:
        return Statement("SELECT name FROM pragma_database_list ORDER BY seq")
    return Statement(
        "SELECT name FROM sys.schemas "
        "WHERE name NOT IN ('guest', 'INFORMATION_SCHEMA', 'sys') "
        "AND name NOT LIKE 'db[_]%' ORDER BY name"
    )


def build_list_databases(driver: str) -> Statement:
    """Databases on the server, system databases excluded, one name per row."""
    dialect = require_dialect(driver, "database listing")
    if dialect == Dialect.POSTGRES:
        return Statement(
            "SELECT datname AS name FROM pg_database WHERE datistemplate = false ORDER BY name"
        )
    if dialect == Dialect.MYSQL:
        return Statement("SHOW DATABASES")
    if dialect == Dialect.SQLITE:
        return Statement("SELECT 'main' AS name")
    return Statement(
        "SELECT name FROM sys.databases "
        "WHERE name NOT IN ('master', 'tempdb', 'model', 'msdb') ORDER BY name"
    )


def build_list_tables(
    driver: str,
    schema: str | None = None,
    search: str | None = None,
    include_views: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> Statement:
    """Table names in *schema*, optionally filtered by a substring *search*.

    postgres defaults to ``public`` and sqlserver to ``dbo``; mysql needs an
    explicit schema (database).  sqlite ignores *schema*.
    """
    dialect = require_dialect(driver, "table listing")
    schema = (schema or "").strip()
    if schema:
        ensure_identifier(schema, kind="schema")
    search = (search or "").strip()
    binds = _Binds()

    if dialect in (Dialect.POSTGRES, Dialect.MYSQL):
        if dialect == Dialect.POSTGRES:
            schema = schema or "public"
        elif not schema:
            raise ValidationError("schema required")
        sql = "SELECT table_name AS name FROM information_schema.tables WHERE table_schema = " + binds(schema)
        if not include_views:
            sql += " AND table_type = 'BASE TABLE'"
        if search:
            op = "ILIKE" if dialect == Dialect.POSTGRES else "LIKE"
            sql += f" AND table_name {op} {binds('%' + search + '%')}"
        sql += f" ORDER BY name LIMIT {binds(limit)} OFFSET {binds(offset)}"
        return Statement(sql, binds.params)

    if dialect == Dialect.SQLITE:
        kinds = "type IN ('table', 'view')" if include_views else "type = 'table'"
        sql = f"SELECT name FROM sqlite_master WHERE {kinds} AND name NOT LIKE 'sqlite_%'"
        if search:
            sql += f" AND name LIKE {binds('%' + search + '%')}"
        sql += f" ORDER BY name LIMIT {binds(limit)} OFFSET {binds(offset)}"
        return Statement(sql, binds.params)

    kinds = "'U', 'V'" if include_views else "'U'"
    sql = (
        "SELECT o.name AS name FROM sys.objects o "
        "JOIN sys.schemas s ON o.schema_id = s.schema_id "
        f"WHERE s.name = {binds(schema or 'dbo')} AND o.type IN ({kinds})"
    )
    if search:
        sql += f" AND o.name LIKE {binds('%' + search + '%')}"
    sql += f" ORDER BY o.name OFFSET {binds(offset)} ROWS FETCH NEXT {binds(limit)} ROWS ONLY"
    return Statement(sql, binds.params)


def build_table_info(driver: str, schema: str | None, table: str) -> Statement:
    """Column metadata query.

    Every dialect yields ``name, data_type, is_nullable ('YES'/'NO'),
    column_default, is_pk`` in ordinal order.
    """
    dialect = require_dialect(driver, "table info")
    table = ensure_identifier(_require(table, "table"), kind="table")
    schema = (schema or "").strip()
    if schema:
        ensure_identifier(schema, kind="schema")
    binds = _Binds()

    if dialect == Dialect.POSTGRES:
        sql = (
            "SELECT c.column_name AS name, c.data_type AS data_type, "
            "c.is_nullable AS is_nullable, c.column_default AS column_default, "
            "EXISTS (SELECT 1 FROM information_schema.table_constraints tc "
            "JOIN information_schema.key_column_usage k "
            "ON k.constraint_name = tc.constraint_name AND k.table_schema = tc.table_schema "
            "AND k.table_name = tc.table_name "
            "WHERE tc.constraint_type = 'PRIMARY KEY' AND tc.table_schema = c.table_schema "
            "AND tc.table_name = c.table_name AND k.column_name = c.column_name) AS is_pk "
            "FROM information_schema.columns c "
            f"WHERE c.table_schema = {binds(schema or 'public')} AND c.table_name = {binds(table)} "
            "ORDER BY c.ordinal_position"
        )
    elif dialect == Dialect.MYSQL:
        if not schema:
            raise ValidationError("schema required for mysql")
        sql = (
            "SELECT column_name AS name, data_type AS data_type, is_nullable AS is_nullable, "
            "column_default AS column_default, column_key = 'PRI' AS is_pk "
            "FROM information_schema.columns "
            f"WHERE table_schema = {binds(schema)} AND table_name = {binds(table)} "
            "ORDER BY ordinal_position"
        )
    elif dialect == Dialect.SQLITE:
        source = f"pragma_table_info({binds(table)}, {binds(schema)})" if schema else f"pragma_table_info({binds(table)})"
        sql = (
            "SELECT name, type AS data_type, "
            "CASE WHEN \"notnull\" = 1 THEN 'NO' ELSE 'YES' END AS is_nullable, "
            "dflt_value AS column_default, pk > 0 AS is_pk "
            f"FROM {source} ORDER BY cid"
        )
    else:
        sql = (
            "SELECT c.name AS name, t.name AS data_type, "
            "CASE WHEN c.is_nullable = 1 THEN 'YES' ELSE 'NO' END AS is_nullable, "
            "OBJECT_DEFINITION(c.default_object_id) AS column_default, "
            "CASE WHEN EXISTS (SELECT 1 FROM sys.indexes i "
            "JOIN sys.index_columns ic ON ic.object_id = i.object_id AND ic.index_id = i.index_id "
            "WHERE i.object_id = c.object_id AND i.is_primary_key = 1 "
            "AND ic.column_id = c.column_id) THEN 1 ELSE 0 END AS is_pk "
            "FROM sys.columns c "
            "JOIN sys.types t ON c.user_type_id = t.user_type_id "
            "JOIN sys.tables tb ON c.object_id = tb.object_id "
            "JOIN sys.schemas s ON tb.schema_id = s.schema_id "
            f"WHERE s.name = {binds(schema or 'dbo')} AND tb.name = {binds(table)} "
            "ORDER BY c.column_id"
        )
    return Statement(sql, binds.params)


def build_view_definition(driver: str, schema: str | None, view: str) -> Statement:
    """Query whose first row holds the view's SQL.

    The definition is the first column, except for mysql's ``SHOW CREATE
    VIEW`` where it is the second.
    """
    dialect = require_dialect(driver, "view definition")
    view = ensure_identifier(_require(view, "view"), kind="view")
    schema = (schema or "").strip()
    if schema:
        ensure_identifier(schema, kind="schema")
    binds = _Binds()

    if dialect == Dialect.POSTGRES:
        sql = (
            "SELECT pg_get_viewdef(c.oid, true) FROM pg_class c "
            "JOIN pg_namespace n ON n.oid = c.relnamespace "
            f"WHERE n.nspname = {binds(schema or 'public')} AND c.relname = {binds(view)} "
            "AND c.relkind IN ('v', 'm')"
        )
        return Statement(sql, binds.params)
    if dialect == Dialect.MYSQL:
        if not schema:
            raise ValidationError("schema required for mysql")
        return Statement(f"SHOW CREATE VIEW {qualify(dialect, schema, view, kind='view')}")
    if dialect == Dialect.SQLITE:
        return Statement(
            f"SELECT sql FROM sqlite_master WHERE type = 'view' AND name = {binds(view)}",
            binds.params,
        )
    sql = (
        "SELECT m.definition FROM sys.views v "
        "JOIN sys.schemas s ON v.schema_id = s.schema_id "
        "JOIN sys.sql_modules m ON v.object_id = m.object_id "
        f"WHERE s.name = {binds(schema or 'dbo')} AND v.name = {binds(view)}"
    )
    return Statement(sql, binds.params)
