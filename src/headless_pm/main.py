"""Main CLI entry point for Headless PM.

This module provides the main Typer application with commands for running
the server, preparing the database and managing API tokens.

Usage:
    headless-pm serve --port 8080
    headless-pm init-db
    headless-pm token create ci --scopes read,write --expires-in-days 30
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from headless_pm.cli import token as token_cli
from headless_pm.config import HeadlessPMConfig, load_config
from headless_pm.database.connection import get_engine, get_session_factory, init_database
from headless_pm.logging import setup_logging

app = typer.Typer(
    name="headless-pm",
    help="Headless PM: project management backend for humans and agents",
    no_args_is_help=True,
)

app.add_typer(token_cli.app, name="token", help="Manage API tokens")

console = Console()


class AppContext:
    """Application context shared across CLI commands.

    Attributes:
        config: Loaded configuration
        engine: Async SQLAlchemy engine
        session_factory: Factory for creating database sessions
    """

    def __init__(self, config: HeadlessPMConfig):
        self.config = config
        self.engine = get_engine(config.database)
        self.session_factory = get_session_factory(self.engine)


_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get the shared application context.

    Raises:
        RuntimeError: If context has not been initialized
    """
    if _app_context is None:
        raise RuntimeError("Application context not initialized. Call initialize_context first.")
    return _app_context


def initialize_context(config: HeadlessPMConfig) -> AppContext:
    global _app_context
    _app_context = AppContext(config)
    return _app_context


@app.command()
def serve(
    host: Annotated[
        Optional[str],
        typer.Option("--host", "-h", help="Host to bind to (default from config)"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Port to bind to (default from config)"),
    ] = None,
) -> None:
    """Start the Headless PM server.

    Runs the FastAPI application with uvicorn, serving the REST API and,
    when enabled, the MCP endpoint.
    """
    import uvicorn

    from headless_pm.web.app import create_app

    ctx = get_app_context()
    bind_host = host or ctx.config.server.host
    bind_port = port or ctx.config.server.port

    console.print("[bold cyan]Starting Headless PM[/bold cyan]")
    console.print(f"[dim]Host:[/dim] {bind_host}")
    console.print(f"[dim]Port:[/dim] {bind_port}")
    console.print(f"[dim]Database:[/dim] {ctx.config.database.database_url}")
    if not ctx.config.admin_api_token:
        console.print("[yellow]No ADMIN_API_TOKEN configured; token management is disabled[/yellow]")
    console.print()

    uvicorn.run(
        create_app(ctx.config),
        host=bind_host,
        port=bind_port,
        log_level=ctx.config.logging.level.lower(),
    )


@app.command("init-db")
def init_db() -> None:
    """Create the database file and any missing tables."""
    ctx = get_app_context()

    async def _init() -> None:
        try:
            await init_database(ctx.engine)
        finally:
            await ctx.engine.dispose()

    asyncio.run(_init())
    console.print(f"[green]Database ready:[/green] {ctx.config.database.database_url}")


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (JSON or TOML)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Configure global options and initialize application context."""
    try:
        config = load_config(config_path)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1) from None

    if verbose:
        config.logging.level = "DEBUG"
    setup_logging(config.logging)
    initialize_context(config)

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")


if __name__ == "__main__":
    app()
