"""CLI — Shared options, connection helper and rendering."""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import Annotated, Any, Iterator, Sequence

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from weebase.config import Settings, get_settings
from weebase.connections import ActiveConnection
from weebase.console import Console as WeebaseConsole
from weebase.exceptions import NotConnectedError, WeebaseError
from weebase.params import ConnectRequest
from weebase.profiles import build_profile_store
from weebase.safety import SafetyPolicy

console = Console()

DEFAULT_PROFILES_PATH = Path.home() / ".weebase" / "profiles.json"

DriverOpt = Annotated[str, typer.Option("--driver", "-d", help="postgres, mysql, sqlite or sqlserver.")]
DsnOpt = Annotated[str, typer.Option("--dsn", help="Native connection string.")]
ProfileOpt = Annotated[str, typer.Option("--profile", "-p", help="Saved profile id.")]
SchemaOpt = Annotated[str, typer.Option("--schema", "-s", help="Schema (database for mysql).")]
JsonOpt = Annotated[bool, typer.Option("--json", help="Output raw JSON.")]
ReadOnlyOpt = Annotated[bool, typer.Option("--read-only", help="Reject anything but SELECT-like SQL.")]
ConfirmOpt = Annotated[bool, typer.Option("--confirm", help="Confirm a mutation in safe mode.")]


def build_console(settings: Settings | None = None) -> WeebaseConsole:
    settings = settings or get_settings()
    path = settings.profiles.path or DEFAULT_PROFILES_PATH
    return WeebaseConsole(settings, profiles=build_profile_store(path))


def policy_for(db: WeebaseConsole, read_only: bool) -> SafetyPolicy:
    if not read_only:
        return db.policy
    return SafetyPolicy(safe_mode_default=db.policy.safe_mode_default, read_only_mode=True)


@contextmanager
def errors_to_exit() -> Iterator[None]:
    """Print weebase errors in red and exit with status 1."""
    try:
        yield
    except WeebaseError as exc:
        console.print(f"[red]Error: {escape(exc.message)}[/red]")
        raise typer.Exit(1) from exc


@contextmanager
def connected(driver: str, dsn: str, profile: str) -> Iterator[tuple[WeebaseConsole, ActiveConnection]]:
    """Open a connection for one command and close it afterwards."""
    with errors_to_exit():
        db = build_console()
        result = db.connect(ConnectRequest(profile_id=profile, driver=driver, dsn=dsn))
        conn = result.connection
        if conn is None:
            raise NotConnectedError()
    try:
        with errors_to_exit():
            yield db, conn
    finally:
        db.disconnect(conn)


def _cell(value: Any) -> str:
    if value is None:
        return "[dim]NULL[/dim]"
    return escape(str(value))


def render_rows(
    columns: Sequence[str],
    rows: Sequence[dict[str, Any]],
    *,
    title: str | None = None,
    as_json: bool = False,
) -> None:
    if as_json:
        console.print_json(data=list(rows), default=str)
        return
    table = Table(title=title)
    for col in columns:
        table.add_column(escape(str(col)), style="cyan" if col == columns[0] else None)
    for row in rows:
        table.add_row(*(_cell(row.get(col)) for col in columns))
    console.print(table)


def parse_assignments(items: Sequence[str], what: str) -> tuple[list[str], list[str]]:
    """Split ``col=value`` pairs into parallel column / value lists."""
    columns: list[str] = []
    values: list[str] = []
    for item in items:
        col, sep, value = item.partition("=")
        if not sep:
            console.print(f"[red]Error: {what} must look like column=value, got {escape(item)!r}[/red]")
            raise typer.Exit(1)
        columns.append(col.strip())
        values.append(value)
    return columns, values
