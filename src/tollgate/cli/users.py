"""User management CLI commands."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table
from sqlmodel import select

from tollgate.config import settings
from tollgate.database import get_session_context
from tollgate.errors import EmailAlreadyInUse, InvalidPassword
from tollgate.models import TokenPurpose, User
from tollgate.models.base import utcnow
from tollgate.services.credentials import validate_password, with_query
from tollgate.services.passwords import hash_password
from tollgate.services.sessions import create_user_session, revoke_user_sessions
from tollgate.services.tokens import issue_token
from tollgate.services.users import create_user, get_user_by_email

console = Console()
app = typer.Typer(help="User management commands")


async def _require_user(session, email: str) -> User:
    user = await get_user_by_email(session, email)
    if not user:
        console.print(f"[red]Error:[/red] User {email} not found")
        raise typer.Exit(1)
    return user


@app.command("list")
def list_users():
    """List all users."""

    async def _list():
        async with get_session_context() as session:
            result = await session.execute(select(User).order_by(User.email))
            users = result.scalars().all()

            table = Table(title="Users")
            table.add_column("ID", style="cyan")
            table.add_column("Email", style="green")
            table.add_column("Name")
            table.add_column("Verified", style="magenta")
            table.add_column("Password", style="magenta")
            table.add_column("Created", style="dim")

            for user in users:
                table.add_row(
                    user.id,
                    user.email,
                    user.name,
                    "Yes" if user.email_verified_at else "No",
                    "Yes" if user.password_hash else "No",
                    user.created_at.strftime("%Y-%m-%d"),
                )

            console.print(table)

    asyncio.run(_list())


@app.command("create")
def create(
    email: str = typer.Argument(..., help="User email"),
    name: str = typer.Option(..., "--name", "-n", help="Display name"),
    password: bool = typer.Option(False, "--password", help="Prompt for a password"),
    verified: bool = typer.Option(False, "--verified", help="Mark the email as verified"),
):
    """Create a new user."""
    password_hash = None
    if password:
        raw = typer.prompt("Password", hide_input=True, confirmation_prompt=True)
        try:
            validate_password(raw)
        except InvalidPassword as e:
            console.print(f"[red]Error:[/red] {e.message}")
            raise typer.Exit(1) from None
        password_hash = hash_password(raw)

    async def _create():
        async with get_session_context() as session:
            try:
                user = await create_user(
                    session,
                    name=name,
                    email=email,
                    password_hash=password_hash,
                    email_verified_at=utcnow() if verified else None,
                )
            except EmailAlreadyInUse:
                console.print(f"[red]Error:[/red] User {email} already exists")
                raise typer.Exit(1) from None
            await session.commit()
            console.print(f"[green]Created user:[/green] {user.email} ({user.id})")

    asyncio.run(_create())


@app.command("revoke-sessions")
def revoke_sessions(email: str = typer.Argument(..., help="User email")):
    """Sign a user out everywhere."""

    async def _revoke():
        async with get_session_context() as session:
            user = await _require_user(session, email)
            revoked = await revoke_user_sessions(session, user.id)
            await session.commit()
            console.print(f"[green]Revoked {revoked} session(s) for[/green] {user.email}")

    asyncio.run(_revoke())


@app.command("password-url")
def password_url(email: str = typer.Argument(..., help="User email")):
    """Generate a set/change password link for a user without sending email."""

    async def _generate():
        async with get_session_context() as session:
            user = await _require_user(session, email)
            purpose = TokenPurpose.CHANGE_PASSWORD if user.password_hash else TokenPurpose.SET_PASSWORD
            token = await issue_token(session, purpose, user.id, settings.token_ttl(purpose))
            await session.commit()

            url = with_query(f"{settings.app_url}/auth/password", token=token)
            console.print(f"[green]{purpose.value} URL:[/green] {url}")
            console.print(f"[dim]Expires in {settings.token_ttl_minutes(purpose)} minutes[/dim]")

    asyncio.run(_generate())


@app.command("session")
def session_token(email: str = typer.Argument(..., help="User email")):
    """Create a session for a user and print its bearer token."""

    async def _create():
        async with get_session_context() as session:
            user = await _require_user(session, email)
            issued = await create_user_session(session, user, user_agent="tollgate-cli")
            await session.commit()
            console.print(f"[green]Bearer token:[/green] {issued.session_id}")
            if issued.expires_at:
                console.print(f"[dim]Expires: {issued.expires_at}[/dim]")

    asyncio.run(_create())
