"""Review CLI commands: discovery, manual runs and publishing."""

from __future__ import annotations

import json
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.table import Table

from reviewportal.cli.output import print_event
from reviewportal.database.queries.project import get_project
from reviewportal.database.queries.review import list_reviews
from reviewportal.errors import PortalError, ProjectNotFoundError
from reviewportal.orchestrator.review_runner import OutcomeStatus, ReviewTarget

app = typer.Typer(help="Pull request review commands")
console = Console()

_STATUS_COLORS = {
    "pending": "yellow",
    "completed": "green",
    "partial": "magenta",
    "failed": "red",
}


async def _load_target(services, project_id: str):
    async with services.session_factory() as session:
        project = await get_project(session, project_id)
    if project is None:
        raise ProjectNotFoundError(project_id)
    return project, ReviewTarget.from_project(project)


@app.command()
def check(
    project_id: Annotated[str, typer.Argument(help="Project ID (e.g. github.com/acme/widgets)")],
    trigger: Annotated[
        bool,
        typer.Option("--trigger", "-t", help="Review pending PRs after discovery"),
    ] = False,
) -> None:
    """Discover labelled PRs of a project, optionally reviewing the pending ones."""
    from reviewportal.main import get_app_context

    ctx = get_app_context()

    async def _check(services):
        project, target = await _load_target(services, project_id)
        found = await services.discovery.discover(project, print_event)
        if not trigger or not found.pending:
            return found.pending, []
        outcomes = await services.orchestrator.run_batch(target, found.pending, print_event)
        return found.pending, outcomes

    try:
        pending, outcomes = ctx.run(_check)
    except PortalError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e

    console.print()
    console.print(f"[bold]{len(pending)}[/bold] PR(s) ready for review")
    if outcomes:
        reviewed = sum(1 for o in outcomes if o.succeeded)
        console.print(f"[bold]{reviewed}/{len(outcomes)}[/bold] PR(s) successfully reviewed")
        if reviewed < len(outcomes):
            raise typer.Exit(code=2)


@app.command()
def run(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
    pr_number: Annotated[int, typer.Argument(help="Pull request number")],
    title: Annotated[str, typer.Option("--title", help="Pull request title")] = "",
) -> None:
    """Review one pull request now, regardless of its label."""
    from reviewportal.main import get_app_context

    ctx = get_app_context()

    async def _run(services):
        _, target = await _load_target(services, project_id)
        return await services.orchestrator.run_review(target, pr_number, title, "", print_event)

    try:
        outcome = ctx.run(_run)
    except PortalError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from e

    if outcome.status == OutcomeStatus.SKIPPED:
        console.print(f"[yellow]Skipped:[/yellow] {outcome.error}")
    elif not outcome.succeeded:
        raise typer.Exit(code=2)


@app.command(name="list")
def list_command(
    project_id: Annotated[
        Optional[str],
        typer.Option("--project", "-p", help="Only reviews of this project"),
    ] = None,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """List reviews, newest first."""
    from reviewportal.main import get_app_context

    ctx = get_app_context()

    async def _list(services):
        async with services.session_factory() as session:
            return await list_reviews(session, project_id=project_id)

    try:
        reviews = ctx.run(_list)
    except Exception as e:
        console.print(f"[red]Error listing reviews:[/red] {e}")
        raise typer.Exit(code=1) from e

    if format == "json":
        output = [
            {
                "id": r.id,
                "project_id": r.project_id,
                "pr_number": r.pr_number,
                "status": r.status.value,
                "verdict": r.verdict.value,
                "comment_count": r.comment_count,
                "reviewed_at": r.reviewed_at.isoformat() if r.reviewed_at else None,
                "github_review_id": r.github_review_id,
            }
            for r in reviews
        ]
        console.print(json.dumps(output, indent=2))
        return

    if not reviews:
        console.print("[yellow]No reviews found[/yellow]")
        return

    table = Table(title="Reviews")
    table.add_column("PR", style="cyan", justify="right")
    table.add_column("Repository")
    table.add_column("Status")
    table.add_column("Verdict")
    table.add_column("Comments", justify="right")
    table.add_column("Reviewed", style="dim")
    table.add_column("ID", style="dim", overflow="fold")

    for r in reviews:
        color = _STATUS_COLORS.get(r.status.value, "white")
        table.add_row(
            f"#{r.pr_number}",
            r.repository,
            f"[{color}]{r.status.value}[/{color}]",
            r.verdict.value,
            str(r.comment_count),
            r.reviewed_at.strftime("%Y-%m-%d %H:%M") if r.reviewed_at else "-",
            r.id,
        )

    console.print(table)


@app.command()
def push(
    review_id: Annotated[str, typer.Argument(help="Review ID")],
) -> None:
    """Publish a completed review to GitHub."""
    from reviewportal.main import get_app_context

    ctx = get_app_context()

    async def _push(services):
        return await services.publisher.publish(review_id)

    try:
        result = ctx.run(_push)
    except PortalError as e:
        console.print(f"[red]Error publishing review:[/red] {e}")
        raise typer.Exit(code=1) from e

    console.print(f"[green]Review published:[/green] {result.review_url}")
