"""CLI — Schema introspection and browsing commands."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.syntax import Syntax
from rich.table import Table

from weebase.cli.commands.common import (
    DriverOpt,
    DsnOpt,
    JsonOpt,
    ProfileOpt,
    SchemaOpt,
    connected,
    console,
    render_rows,
)


def schemas(driver: DriverOpt = "", dsn: DsnOpt = "", profile: ProfileOpt = "") -> None:
    """List schemas (databases for mysql)."""
    with connected(driver, dsn, profile) as (db, conn):
        names = db.list_schemas(conn)
    for name in names:
        console.print(name)


def databases(driver: DriverOpt = "", dsn: DsnOpt = "", profile: ProfileOpt = "") -> None:
    """List databases on the server."""
    with connected(driver, dsn, profile) as (db, conn):
        names = db.list_databases(conn)
    for name in names:
        console.print(name)


def tables(
    driver: DriverOpt = "",
    dsn: DsnOpt = "",
    profile: ProfileOpt = "",
    schema: SchemaOpt = "",
    search: Annotated[str, typer.Option("--search", "-q", help="Substring filter.")] = "",
    views: Annotated[bool, typer.Option("--views", help="Include views.")] = False,
    limit: Annotated[int, typer.Option(help="Page size.")] = 50,
    offset: Annotated[int, typer.Option(help="Rows to skip.")] = 0,
) -> None:
    """List tables in a schema."""
    with connected(driver, dsn, profile) as (db, conn):
        names = db.list_tables(conn, schema or None, search, views, limit, offset)
    for name in names:
        console.print(name)


def describe(
    table: Annotated[str, typer.Argument(help="Table name.")],
    driver: DriverOpt = "",
    dsn: DsnOpt = "",
    profile: ProfileOpt = "",
    schema: SchemaOpt = "",
) -> None:
    """Show a table's columns."""
    with connected(driver, dsn, profile) as (db, conn):
        columns = db.table_info(conn, schema or None, table)

    out = Table(title=table)
    out.add_column("Column", style="cyan")
    out.add_column("Type")
    out.add_column("Nullable")
    out.add_column("Default")
    out.add_column("PK", style="green")
    for col in columns:
        out.add_row(
            col.name,
            col.data_type,
            "yes" if col.nullable else "no",
            "" if col.default is None else str(col.default),
            "yes" if col.primary_key else "",
        )
    console.print(out)


def browse(
    table: Annotated[str, typer.Argument(help="Table name.")],
    driver: DriverOpt = "",
    dsn: DsnOpt = "",
    profile: ProfileOpt = "",
    schema: SchemaOpt = "",
    limit: Annotated[int, typer.Option(help="Page size.")] = 50,
    offset: Annotated[int, typer.Option(help="Rows to skip.")] = 0,
    json_output: JsonOpt = False,
) -> None:
    """Page through a table's rows."""
    with connected(driver, dsn, profile) as (db, conn):
        page = db.browse_rows(conn, schema or None, table, limit, offset)
    render_rows(
        page.columns,
        page.rows,
        title=f"{table} ({page.offset + 1}-{page.offset + len(page.rows)} of {page.total})",
        as_json=json_output,
    )


def view_def(
    view: Annotated[str, typer.Argument(help="View name.")],
    driver: DriverOpt = "",
    dsn: DsnOpt = "",
    profile: ProfileOpt = "",
    schema: SchemaOpt = "",
) -> None:
    """Print a view's SQL definition."""
    with connected(driver, dsn, profile) as (db, conn):
        definition = db.view_definition(conn, schema or None, view)
    console.print(Syntax(definition, "sql"))
