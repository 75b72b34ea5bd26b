"""Poller CLI commands."""

from __future__ import annotations

import typer
from rich.console import Console

from reviewportal.errors import ConfigurationError

app = typer.Typer(help="GitHub polling commands")
console = Console()


@app.command()
def once() -> None:
    """Run one poll cycle over every project with polling enabled."""
    from reviewportal.main import get_app_context

    ctx = get_app_context()

    async def _poll(services):
        if not services.github.is_configured:
            raise ConfigurationError("GitHub token is required for polling mode")
        result = await services.poller.poll_once()
        return result, services.poller.last_error

    try:
        result, last_error = ctx.run(_poll)
    except ConfigurationError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e

    console.print(
        f"Checked [bold]{result.projects_checked}[/bold] project(s), "
        f"triggered [bold]{result.reviews_triggered}[/bold] review(s)"
    )
    if last_error:
        console.print(f"[yellow]Last error:[/yellow] {last_error}")
        raise typer.Exit(code=2)
