"""Project management CLI commands.

Projects are discovered from the review store; ``add`` clones a
repository and generates its review guidelines first.
"""

from __future__ import annotations

import json
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from reviewportal.cli.output import print_event
from reviewportal.database.queries.project import list_projects
from reviewportal.orchestrator.initializer import sync_projects

app = typer.Typer(help="Project management commands")
console = Console()


@app.command(name="list")
def list_command(
    format: Annotated[
        str,
        typer.Option(
            "--format",
            "-f",
            help="Output format (table or json)",
        ),
    ] = "table",
) -> None:
    """List registered projects."""
    from reviewportal.main import get_app_context

    ctx = get_app_context()

    async def _list_projects(services):
        async with services.session_factory() as session:
            return await list_projects(session)

    try:
        projects = ctx.run(_list_projects)
    except Exception as e:
        console.print(f"[red]Error listing projects:[/red] {e}")
        raise typer.Exit(code=1) from e

    if format == "json":
        output = [
            {
                "id": p.id,
                "display_name": p.display_name,
                "git_remote": p.git_remote,
                "auto_review_enabled": p.auto_review_enabled,
                "polling_enabled": p.polling_enabled,
                "review_trigger_label": p.review_trigger_label,
                "last_polled_at": p.last_polled_at.isoformat() if p.last_polled_at else None,
            }
            for p in projects
        ]
        console.print(json.dumps(output, indent=2))
        return

    if not projects:
        console.print("[yellow]No projects found[/yellow]")
        return

    table = Table(title="Projects")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="bold")
    table.add_column("Label", style="magenta")
    table.add_column("Auto review")
    table.add_column("Polling")
    table.add_column("Last polled", style="dim")

    for p in projects:
        table.add_row(
            p.id,
            p.display_name,
            p.review_trigger_label,
            "[green]yes[/green]" if p.auto_review_enabled else "[dim]no[/dim]",
            "[green]yes[/green]" if p.polling_enabled else "[dim]no[/dim]",
            p.last_polled_at.strftime("%Y-%m-%d %H:%M") if p.last_polled_at else "-",
        )

    console.print(table)


@app.command()
def sync() -> None:
    """Register every project found in the review store."""
    from reviewportal.main import get_app_context

    ctx = get_app_context()

    async def _sync(services):
        return await sync_projects(services.session_factory, services.store)

    try:
        result = ctx.run(_sync)
    except Exception as e:
        console.print(f"[red]Error syncing projects:[/red] {e}")
        raise typer.Exit(code=1) from e

    console.print(
        f"[green]Synced[/green] {result.upserted} of {result.discovered} project(s) "
        f"from {ctx.config.store.projects_dir}"
    )


@app.command()
def add(
    git_url: Annotated[str, typer.Argument(help="Git remote to clone")],
    name: Annotated[
        Optional[str],
        typer.Option("--name", "-n", help="Display name for the project"),
    ] = None,
) -> None:
    """Clone a repository, generate its guidelines and register it."""
    from reviewportal.main import get_app_context

    ctx = get_app_context()

    async def _add(services):
        return await services.initializer.add_project(git_url, name, print_event)

    try:
        result = ctx.run(_add)
    except Exception as e:
        console.print(f"[red]Error adding project:[/red] {e}")
        raise typer.Exit(code=1) from e

    if result is None:
        raise typer.Exit(code=1)
    console.print(f"[green]Project ready:[/green] {result.project_id}")
