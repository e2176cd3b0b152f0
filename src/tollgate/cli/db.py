"""Schema migration commands, driven through Alembic's command API."""

from pathlib import Path

import typer
from alembic import command
from alembic.config import Config
from alembic.util import CommandError
from rich.console import Console

console = Console()
app = typer.Typer(help="Database management commands")

ConfigOption = typer.Option(Path("alembic.ini"), "--config", "-c", help="Path to alembic.ini")


def load_config(path: Path) -> Config:
    if not path.is_file():
        console.print(f"[red]No Alembic config at {path}[/red]")
        raise typer.Exit(1)
    return Config(str(path))


def run(action: str, fn, *args) -> None:
    """Run an Alembic command, turning its failures into a non-zero exit."""
    try:
        fn(*args)
    except CommandError as e:
        console.print(f"[red]{action} failed:[/red] {e}")
        raise typer.Exit(1) from e
    console.print(f"[green]{action} complete[/green]")


@app.command("migrate")
def migrate(
    revision: str = typer.Argument("head", help="Target revision"),
    config: Path = ConfigOption,
):
    """Upgrade the schema to ``revision``."""
    console.print(f"[dim]Upgrading to {revision}...[/dim]")
    run("Migration", command.upgrade, load_config(config), revision)


@app.command("rollback")
def rollback(
    revision: str = typer.Argument("-1", help="Target revision (-1 steps back once)"),
    config: Path = ConfigOption,
):
    """Downgrade the schema to ``revision``."""
    console.print(f"[dim]Downgrading to {revision}...[/dim]")
    run("Rollback", command.downgrade, load_config(config), revision)


@app.command("current")
def current(config: Path = ConfigOption):
    """Show the revision the database is at."""
    command.current(load_config(config), verbose=True)


@app.command("reset")
def reset(
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation"),
    config: Path = ConfigOption,
):
    """Drop every table and migrate back up. Signs everybody out for good."""
    if not force and not typer.confirm(
        "This deletes all users, sessions and pending tokens. Continue?"
    ):
        console.print("[dim]Cancelled[/dim]")
        raise typer.Exit(0)

    alembic_config = load_config(config)
    run("Downgrade", command.downgrade, alembic_config, "base")
    run("Upgrade", command.upgrade, alembic_config, "head")
