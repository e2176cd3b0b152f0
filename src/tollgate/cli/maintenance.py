"""Maintenance and cleanup commands."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table

from tollgate.tasks import queue
from tollgate.tasks.maintenance import MAINTENANCE_TIMEOUT_SECONDS

console = Console()
app = typer.Typer(help="Maintenance and cleanup commands")


@app.command("sweep")
def sweep(
    retention_days: int | None = typer.Option(
        None, "--days", "-d", help="Keep spent tokens newer than this (default from settings)"
    ),
    background: bool = typer.Option(False, "--background", "-b", help="Run in background worker"),
):
    """Delete expired sessions and old verification tokens."""

    async def _sweep():
        if background:
            for name, kwargs in (
                ("sweep_sessions", {}),
                ("sweep_tokens", {"retention_days": retention_days}),
            ):
                job = await queue.enqueue(name, timeout=MAINTENANCE_TIMEOUT_SECONDS, **kwargs)
                console.print(f"[green]Queued {name}:[/green] {job.id if job else 'unknown'}")
            return

        from tollgate.tasks.maintenance import sweep_sessions, sweep_tokens

        sessions = await sweep_sessions(ctx={})
        tokens = await sweep_tokens(ctx={}, retention_days=retention_days)

        for result in (sessions, tokens):
            if not result.get("success"):
                console.print(f"[red]Error:[/red] {result.get('error')}")
                raise typer.Exit(1)

        table = Table(title="Sweep Results")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", justify="right")
        table.add_row("Expired sessions deleted", str(sessions["sessions_deleted"]))
        table.add_row("Tokens deleted", str(tokens["tokens_deleted"]))
        table.add_row("Token retention (days)", str(tokens["retention_days"]))
        console.print(table)

    asyncio.run(_sweep())
