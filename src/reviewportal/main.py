"""Main CLI entry point for Review Portal.

This module provides the main Typer application with sub-commands for
project management, PR discovery and review, and polling.

Usage:
    reviewportal serve
    reviewportal project list
    reviewportal project sync
    reviewportal review check github.com/acme/widgets --trigger
    reviewportal poll once
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Annotated, Optional, TypeVar

import typer
from rich.console import Console

from reviewportal.cli import poll as poll_cli
from reviewportal.cli import project as project_cli
from reviewportal.cli import review as review_cli
from reviewportal.config import PortalConfig, load_config
from reviewportal.database.connection import get_engine, get_session_factory, init_database
from reviewportal.logging import setup_logging
from reviewportal.orchestrator.services import PortalServices, build_services

T = TypeVar("T")

app = typer.Typer(
    name="reviewportal",
    help="Review Portal: AI-generated GitHub pull request reviews",
    no_args_is_help=True,
)

app.add_typer(project_cli.app, name="project", help="Manage projects")
app.add_typer(review_cli.app, name="review", help="Discover, run and publish reviews")
app.add_typer(poll_cli.app, name="poll", help="Run the GitHub poller")

console = Console()


class AppContext:
    """Application context shared across CLI commands.

    Attributes:
        config: Loaded portal configuration
        engine: Async SQLAlchemy engine
        session_factory: Factory for creating database sessions
    """

    def __init__(self, config: PortalConfig):
        self.config = config
        self.engine = get_engine(config.database_url, config.database)
        self.session_factory = get_session_factory(self.engine)

    def run(self, work: Callable[[PortalServices], Awaitable[T]]) -> T:
        """Run ``work`` with a fresh service graph on a new event loop.

        The schema is created if needed, and the services and engine are
        closed afterwards.
        """

        async def _run() -> T:
            await init_database(self.engine)
            services = build_services(self.config, self.session_factory)
            try:
                return await work(services)
            finally:
                await services.aclose()
                await self.engine.dispose()

        return asyncio.run(_run())


_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get the shared application context.

    Raises:
        RuntimeError: If context has not been initialized
    """
    if _app_context is None:
        raise RuntimeError("Application context not initialized. Call initialize_context first.")
    return _app_context


def initialize_context(config: PortalConfig) -> AppContext:
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
    """Start the Review Portal web server.

    Runs the FastAPI application with uvicorn. The poller starts with the
    server when ``polling.start_on_boot`` is set.
    """
    import uvicorn

    from reviewportal.web.app import create_app

    config = get_app_context().config
    host = host or config.web.host
    port = port or config.web.port

    console.print("[bold cyan]Starting Review Portal[/bold cyan]")
    console.print(f"[dim]Host:[/dim] {host}")
    console.print(f"[dim]Port:[/dim] {port}")
    console.print(f"[dim]Store:[/dim] {config.store.root}")
    console.print()

    uvicorn.run(
        create_app(config),
        host=host,
        port=port,
        log_level=config.logging.level.lower(),
    )


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
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
    """Load configuration, set up logging and initialize the context."""
    try:
        config = load_config(config_path)
    except Exception as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1) from e

    if verbose:
        config.logging.level = "DEBUG"
    setup_logging(config.logging)

    try:
        initialize_context(config)
    except Exception as e:
        console.print(f"[red]Error initializing application:[/red] {e}")
        raise typer.Exit(code=1) from e

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")


if __name__ == "__main__":
    app()
