"""CLI — Single-row insert, update and delete commands."""

from __future__ import annotations

from typing import Annotated

import typer

from weebase.cli.commands.common import (
    ConfirmOpt,
    DriverOpt,
    DsnOpt,
    ProfileOpt,
    ReadOnlyOpt,
    SchemaOpt,
    connected,
    console,
    errors_to_exit,
    parse_assignments,
    policy_for,
    render_rows,
)
from weebase.params import DeleteRequest, InsertRequest, UpdateRequest

KeyOpt = Annotated[str, typer.Option("--key", "-k", help="Row key as column=value.")]
SetOpt = Annotated[list[str], typer.Option("--set", help="column=value (repeatable).")]


def _key(key: str) -> tuple[str, str]:
    columns, values = parse_assignments([key], "--key")
    return columns[0], values[0]


def view(
    table: Annotated[str, typer.Argument(help="Table name.")],
    key: KeyOpt,
    driver: DriverOpt = "",
    dsn: DsnOpt = "",
    profile: ProfileOpt = "",
    schema: SchemaOpt = "",
) -> None:
    """Show one row by key."""
    key_column, key_value = _key(key)
    with connected(driver, dsn, profile) as (db, conn):
        row = db.view_row(conn, schema or None, table, key_column, key_value)
    if row is None:
        console.print("[yellow]No matching row.[/yellow]")
        raise typer.Exit(1)
    render_rows(list(row), [row], title=table)


def insert(
    table: Annotated[str, typer.Argument(help="Table name.")],
    values: SetOpt,
    driver: DriverOpt = "",
    dsn: DsnOpt = "",
    profile: ProfileOpt = "",
    schema: SchemaOpt = "",
    confirm: ConfirmOpt = False,
    read_only: ReadOnlyOpt = False,
) -> None:
    """Insert one row."""
    columns, data = parse_assignments(values, "--set")
    with errors_to_exit():
        request = InsertRequest(schema=schema or None, table=table, columns=columns, values=data)
    with connected(driver, dsn, profile) as (db, conn):
        result = db.insert_row(conn, request, confirmed=confirm, policy=policy_for(db, read_only))
    console.print(f"[green]Inserted {result.rows_affected} row(s).[/green]")


def update(
    table: Annotated[str, typer.Argument(help="Table name.")],
    key: KeyOpt,
    values: SetOpt,
    driver: DriverOpt = "",
    dsn: DsnOpt = "",
    profile: ProfileOpt = "",
    schema: SchemaOpt = "",
    confirm: ConfirmOpt = False,
    read_only: ReadOnlyOpt = False,
) -> None:
    """Update exactly one row, matched by key."""
    key_column, key_value = _key(key)
    columns, data = parse_assignments(values, "--set")
    with errors_to_exit():
        request = UpdateRequest(
            schema=schema or None,
            table=table,
            key_column=key_column,
            key_value=key_value,
            set_columns=columns,
            set_values=data,
        )
    with connected(driver, dsn, profile) as (db, conn):
        db.update_row(conn, request, confirmed=confirm, policy=policy_for(db, read_only))
    console.print("[green]Updated 1 row.[/green]")


def delete(
    table: Annotated[str, typer.Argument(help="Table name.")],
    key: KeyOpt,
    driver: DriverOpt = "",
    dsn: DsnOpt = "",
    profile: ProfileOpt = "",
    schema: SchemaOpt = "",
    confirm: ConfirmOpt = False,
    read_only: ReadOnlyOpt = False,
) -> None:
    """Delete exactly one row, matched by key."""
    key_column, key_value = _key(key)
    with errors_to_exit():
        request = DeleteRequest(
            schema=schema or None, table=table, key_column=key_column, key_value=key_value
        )
    with connected(driver, dsn, profile) as (db, conn):
        db.delete_row(conn, request, confirmed=confirm, policy=policy_for(db, read_only))
    console.print("[green]Deleted 1 row.[/green]")
