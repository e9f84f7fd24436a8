"""CLI — Saved connection profile commands."""

from __future__ import annotations

from typing import Annotated

import typer
from rich.table import Table

from weebase.cli.commands.common import DriverOpt, build_console, console, errors_to_exit
from weebase.logging import redact_dsn

app = typer.Typer(help="Manage saved connection profiles.", no_args_is_help=True)


@app.command("list")
def list_profiles(
    show_dsn: Annotated[bool, typer.Option("--show-dsn", help="Include DSNs (passwords masked).")] = False,
) -> None:
    """List saved profiles."""
    with errors_to_exit():
        profiles = build_console().list_profiles()

    table = Table(title="Connection Profiles")
    table.add_column("ID", style="cyan")
    table.add_column("Name")
    table.add_column("Driver", style="green")
    if show_dsn:
        table.add_column("DSN")
    for p in profiles:
        row = [p.id, p.name, p.driver]
        if show_dsn:
            row.append(redact_dsn(p.dsn))
        table.add_row(*row)
    console.print(table)


@app.command("save")
def save_profile(
    name: Annotated[str, typer.Argument(help="Display name.")],
    driver: DriverOpt,
    dsn: Annotated[str, typer.Option("--dsn", help="Native connection string.")],
) -> None:
    """Save a (driver, DSN) pair and print its id."""
    with errors_to_exit():
        profile = build_console().save_profile(name, driver, dsn)
    console.print(f"[green]Saved profile {profile.name}[/green] id={profile.id}")
