"""CLI — SQL console, EXPLAIN and CREATE TABLE commands."""

from __future__ import annotations

import sys
from typing import Annotated

import typer
from rich.syntax import Syntax

from weebase.cli.commands.common import (
    DriverOpt,
    DsnOpt,
    JsonOpt,
    ProfileOpt,
    ReadOnlyOpt,
    SchemaOpt,
    connected,
    console,
    errors_to_exit,
    policy_for,
    render_rows,
)
from weebase.console import ExecResult
from weebase.exceptions import ValidationError
from weebase.params import ColumnSpec

_COLUMN_FLAGS = {"pk", "ai", "notnull"}


def _read_sql(text: str | None) -> str:
    if text is None or text == "-":
        return sys.stdin.read()
    return text


def sql(
    text: Annotated[str | None, typer.Argument(help="SQL text, or '-' to read stdin.")] = None,
    driver: DriverOpt = "",
    dsn: DsnOpt = "",
    profile: ProfileOpt = "",
    read_only: ReadOnlyOpt = False,
    transactional: Annotated[bool, typer.Option("--tx", help="Wrap in a transaction.")] = False,
    json_output: JsonOpt = False,
) -> None:
    """Run ad-hoc SQL.

    SELECT-like statements print rows; anything else prints the affected count.
    """
    statement = _read_sql(text)
    with connected(driver, dsn, profile) as (db, conn):
        result = db.execute_sql(
            conn, statement, transactional=transactional, policy=policy_for(db, read_only)
        )

    if isinstance(result, ExecResult):
        console.print(
            f"[green]{result.rows_affected} row(s) affected[/green] ({result.elapsed_ms} ms)"
        )
        return
    render_rows(result.columns, result.rows, as_json=json_output)
    if not json_output:
        suffix = " [yellow](truncated)[/yellow]" if result.truncated else ""
        console.print(f"{result.row_count} row(s) ({result.elapsed_ms} ms){suffix}")


def explain(
    text: Annotated[str | None, typer.Argument(help="SQL text, or '-' to read stdin.")] = None,
    driver: DriverOpt = "",
    dsn: DsnOpt = "",
    profile: ProfileOpt = "",
    format_json: Annotated[bool, typer.Option("--format-json", help="JSON plan (postgres, mysql).")] = False,
    json_output: JsonOpt = False,
) -> None:
    """Show the execution plan for a statement."""
    statement = _read_sql(text)
    with connected(driver, dsn, profile) as (db, conn):
        result = db.explain_sql(conn, statement, format_json=format_json)
    render_rows(result.columns, result.rows, title="Plan", as_json=json_output)


def parse_column(spec: str) -> ColumnSpec:
    """Parse ``name[:type[:flag,flag]]`` where flags are pk, ai, notnull."""
    parts = spec.split(":", 2)
    name = parts[0]
    base_type = parts[1] if len(parts) > 1 else ""
    flags = {f.strip().lower() for f in parts[2].split(",") if f.strip()} if len(parts) > 2 else set()
    unknown = flags - _COLUMN_FLAGS
    if unknown:
        raise ValidationError(f"unknown column flag(s): {', '.join(sorted(unknown))}")
    return ColumnSpec(
        name=name,
        base_type=base_type,
        primary_key="pk" in flags,
        auto_increment="ai" in flags,
        nullable="notnull" not in flags and "pk" not in flags,
    )


def create_table(
    table: Annotated[str, typer.Argument(help="Table name.")],
    column: Annotated[
        list[str],
        typer.Option("--column", "-c", help="name[:type[:pk,ai,notnull]] (repeatable)."),
    ],
    driver: DriverOpt = "",
    dsn: DsnOpt = "",
    profile: ProfileOpt = "",
    schema: SchemaOpt = "",
    read_only: ReadOnlyOpt = False,
) -> None:
    """Create a table from column specs and print the SQL that ran."""
    with errors_to_exit():
        columns = [parse_column(c) for c in column]
    with connected(driver, dsn, profile) as (db, conn):
        statement = db.create_table(
            conn, schema or None, table, columns, policy=policy_for(db, read_only)
        )
    console.print(Syntax(statement, "sql"))
    console.print(f"[green]Table {table} created.[/green]")
