"""API token CLI commands.

Tokens can be issued here without the HTTP admin token, for example to
bootstrap the first automation client of a fresh deployment.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from headless_pm.database.connection import init_database
from headless_pm.database.models.base import utc_now
from headless_pm.database.queries.token import create_api_token, list_api_tokens, revoke_api_token
from headless_pm.errors import HeadlessPMError
from headless_pm.web.auth import generate_token, hash_token, parse_scopes

app = typer.Typer(help="API token commands")
console = Console()


@app.command()
def create(
    name: Annotated[str, typer.Argument(help="Token name")],
    scopes: Annotated[
        str,
        typer.Option("--scopes", "-s", help="Comma-separated scopes"),
    ] = "read,write",
    description: Annotated[
        Optional[str],
        typer.Option("--description", "-d", help="Free-text description"),
    ] = None,
    expires_in_days: Annotated[
        Optional[int],
        typer.Option("--expires-in-days", "-e", min=1, help="Lifetime in days"),
    ] = None,
) -> None:
    """Issue an API token and print its plaintext once."""
    from headless_pm.main import get_app_context

    ctx = get_app_context()
    plaintext = generate_token()
    expires_at = utc_now() + timedelta(days=expires_in_days) if expires_in_days else None

    async def _create():
        await init_database(ctx.engine)
        try:
            async with ctx.session_factory() as session:
                return await create_api_token(
                    session,
                    name=name,
                    token_hash=hash_token(plaintext),
                    scopes=",".join(parse_scopes(scopes)),
                    description=description,
                    expires_at=expires_at,
                )
        finally:
            await ctx.engine.dispose()

    try:
        record = asyncio.run(_create())
    except HeadlessPMError as e:
        console.print(f"[red]Error creating token:[/red] {e.message}")
        raise typer.Exit(code=1) from None

    console.print(
        Panel(
            f"[bold]ID:[/bold] {record.id}\n"
            f"[bold]Name:[/bold] {record.name}\n"
            f"[bold]Scopes:[/bold] {record.scopes}\n"
            f"[bold]Expires:[/bold] {record.expires_at or 'never'}\n\n"
            f"[bold yellow]{plaintext}[/bold yellow]",
            title="Token created (shown once)",
            border_style="green",
        )
    )


@app.command("list")
def list_tokens() -> None:
    """List issued tokens."""
    from headless_pm.main import get_app_context

    ctx = get_app_context()

    async def _list():
        try:
            async with ctx.session_factory() as session:
                return await list_api_tokens(session)
        finally:
            await ctx.engine.dispose()

    records = asyncio.run(_list())
    if not records:
        console.print("[yellow]No tokens found[/yellow]")
        return

    now = utc_now()
    table = Table(title="API Tokens")
    table.add_column("ID", justify="right")
    table.add_column("Name", style="bold")
    table.add_column("Scopes")
    table.add_column("Expires")
    table.add_column("Last used")
    table.add_column("State")
    for record in records:
        expired = record.expires_at is not None and record.expires_at <= now
        state = "[red]revoked[/red]" if expired or not record.is_active else "[green]active[/green]"
        table.add_row(
            str(record.id),
            record.name,
            record.scopes,
            str(record.expires_at or "never"),
            str(record.last_used or "-"),
            state,
        )
    console.print(table)


@app.command()
def revoke(token_id: Annotated[int, typer.Argument(help="Token id")]) -> None:
    """Revoke a token immediately."""
    from headless_pm.main import get_app_context

    ctx = get_app_context()

    async def _revoke():
        try:
            async with ctx.session_factory() as session:
                return await revoke_api_token(session, token_id)
        finally:
            await ctx.engine.dispose()

    try:
        asyncio.run(_revoke())
    except HeadlessPMError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1) from None
    console.print(f"[green]Token {token_id} revoked[/green]")
