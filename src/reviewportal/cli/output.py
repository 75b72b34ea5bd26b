"""Console rendering of progress events for CLI commands."""

from __future__ import annotations

from rich.console import Console

from reviewportal.review.events import EventKind, ReviewEvent

console = Console()

_STYLES = {
    EventKind.STATUS: "cyan",
    EventKind.INFO: "dim",
    EventKind.PR_STATUS: "magenta",
    EventKind.PRS_FOUND: "bold",
    EventKind.REVIEW_TRIGGERED: "bold cyan",
    EventKind.REVIEW_SAVED: "green",
    EventKind.REVIEW_ERROR: "red",
    EventKind.DONE: "bold green",
    EventKind.ERROR: "bold red",
}


def _describe(event: ReviewEvent) -> str:
    data = event.data
    if "message" in data:
        return str(data["message"])
    if event.kind == EventKind.PR_STATUS:
        return f"PR #{data.get('pr_number')} {data.get('pr_title', '')}: {data.get('status')}"
    if event.kind == EventKind.PRS_FOUND:
        return f"{len(data.get('prs', []))} open PR(s) with the trigger label"
    if event.kind == EventKind.REVIEW_TRIGGERED:
        return f"Reviewing PR #{data.get('pr_number')} (session {data.get('session_id')})"
    if event.kind == EventKind.REVIEW_SAVED:
        return (
            f"PR #{data.get('pr_number')} reviewed: {data.get('verdict')}, "
            f"{data.get('comment_count', 0)} comment(s)"
        )
    if event.kind == EventKind.REVIEW_ERROR:
        return f"PR #{data.get('pr_number')} failed: {data.get('error')}"
    return str(data)


async def print_event(event: ReviewEvent) -> None:
    """EventSink that prints events; agent output lines are shown dimmed."""
    if event.kind in (EventKind.CLI_OUTPUT, EventKind.SESSION_EVENT):
        message = str(event.data.get("message", ""))
        console.print(message, style="dim", markup=False, highlight=False)
        return
    style = _STYLES.get(event.kind, "white")
    console.print(f"[{style}]{event.kind.value:>16}[/{style}]  ", end="")
    console.print(_describe(event), markup=False, highlight=False)
