"""weebase CLI — Entry point.

Usage:
    weebase drivers
    weebase dsn sqlite --database ./data/app.db
    weebase databases --profile <id>
    weebase tables --driver sqlite --dsn ./data/app.db
    weebase describe users --profile <id>
    weebase browse users --driver postgres --dsn "host=db user=app dbname=app"
    weebase sql "SELECT * FROM users" --profile <id>
    weebase explain "SELECT * FROM users WHERE id = 1" --profile <id>
    weebase create-table users -c id:integer:pk,ai -c name:text:notnull --profile <id>
    weebase delete users --key id=3 --confirm --profile <id>
    weebase profiles list
    weebase profiles save local --driver sqlite --dsn ./data/app.db
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from weebase.cli.commands import catalog, profiles, rows, sql
from weebase.cli.commands.common import build_console, console, errors_to_exit
from weebase.config import Settings, override_settings
from weebase.dsn import build_dsn
from weebase.logging import configure_logging

app = typer.Typer(
    name="weebase",
    help="weebase — database console for PostgreSQL, MySQL, SQLite and SQL Server.",
    no_args_is_help=True,
    pretty_exceptions_enable=False,
)

app.add_typer(profiles.app, name="profiles")

app.command("databases")(catalog.databases)
app.command("schemas")(catalog.schemas)
app.command("tables")(catalog.tables)
app.command("describe")(catalog.describe)
app.command("browse")(catalog.browse)
app.command("view-def")(catalog.view_def)
app.command("sql")(sql.sql)
app.command("explain")(sql.explain)
app.command("create-table")(sql.create_table)
app.command("view")(rows.view)
app.command("insert")(rows.insert)
app.command("update")(rows.update)
app.command("delete")(rows.delete)


@app.callback()
def main_callback(
    config: Annotated[
        Path | None, typer.Option("--config", "-c", help="Path to config.yaml.")
    ] = None,
    log_level: Annotated[
        str | None, typer.Option("--log-level", help="Override the configured log level.")
    ] = None,
) -> None:
    with errors_to_exit():
        settings = Settings.load(config_file=config)
    override_settings(settings)
    configure_logging(
        level=log_level or settings.logging.level,
        format=settings.logging.format,
        log_file=str(settings.logging.file) if settings.logging.file else None,
    )


@app.command("drivers")
def drivers() -> None:
    """List the drivers connections may use."""
    for name in build_console().drivers():
        console.print(name)


@app.command("dsn")
def dsn(
    driver: Annotated[str, typer.Argument(help="postgres, mysql, sqlite or sqlserver.")],
    host: Annotated[str, typer.Option(help="Server host.")] = "",
    port: Annotated[str, typer.Option(help="Server port.")] = "",
    user: Annotated[str, typer.Option(help="User name.")] = "",
    password: Annotated[str, typer.Option(help="Password.")] = "",
    database: Annotated[str, typer.Option(help="Database name, or file path for sqlite.")] = "",
) -> None:
    """Build a native DSN from discrete fields."""
    with errors_to_exit():
        value = build_dsn(driver, host=host, port=port, user=user, password=password, database=database)
    typer.echo(value)


if __name__ == "__main__":
    app()
