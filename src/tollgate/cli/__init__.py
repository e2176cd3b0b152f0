"""Tollgate command line: server, worker, and admin tasks."""

import typer

from tollgate import __version__
from tollgate.cli.db import app as db_app
from tollgate.cli.maintenance import app as maintenance_app
from tollgate.cli.users import app as users_app

app = typer.Typer(name="tollgate", help="Tollgate CLI", no_args_is_help=True)

app.add_typer(db_app, name="db")
app.add_typer(users_app, name="users")
app.add_typer(maintenance_app, name="maintenance")


def show_version(value: bool) -> None:
    if value:
        typer.echo(f"tollgate {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    _version: bool = typer.Option(
        False, "--version", callback=show_version, is_eager=True, help="Print the version and exit"
    ),
):
    """Session and credential-change service."""


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Interface to bind"),
    port: int = typer.Option(8000, help="Port to bind"),
    reload: bool | None = typer.Option(
        None, "--reload/--no-reload", help="Auto-reload on changes (default: on in development)"
    ),
    workers: int = typer.Option(1, help="Number of uvicorn worker processes"),
):
    """Run the HTTP API."""
    import uvicorn

    from tollgate.config import settings
    from tollgate.logging import get_uvicorn_log_config

    if reload is None:
        reload = settings.is_development

    uvicorn.run(
        "tollgate.main:app",
        host=host,
        port=port,
        reload=reload,
        workers=1 if reload else workers,
        log_config=get_uvicorn_log_config(),
        proxy_headers=True,
    )


@app.command()
def worker():
    """Run the SAQ worker that sweeps expired sessions and tokens."""
    from tollgate.worker import run_worker

    run_worker()
