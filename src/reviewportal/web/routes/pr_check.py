"""Pull request discovery and manual review triggers.

Routes:
    POST /api/projects/{project_id}/check-prs         - Discover PRs, optionally review (SSE)
    POST /api/projects/{project_id}/review-pr         - Review one PR in the background
    POST /api/projects/{project_id}/review-prs-stream - Review a list of PRs (SSE)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status
from pydantic import AliasChoices, BaseModel, Field
from sse_starlette.sse import EventSourceResponse

from reviewportal.database.models.base import utcnow
from reviewportal.database.queries.project import get_project
from reviewportal.errors import ConfigurationError, GitHubAPIError, ReviewAlreadyClaimedError
from reviewportal.logging import get_logger
from reviewportal.orchestrator.review_runner import ReviewOutcome, ReviewTarget
from reviewportal.orchestrator.services import PortalServices
from reviewportal.review.discovery import PullRequestCandidate
from reviewportal.review.events import EventKind, EventSink, event
from reviewportal.web.dependencies import get_services, load_project
from reviewportal.web.sse import stream_events

if TYPE_CHECKING:
    from reviewportal.database.models.project import Project

logger = get_logger(__name__)


class CheckPRsRequest(BaseModel):
    """Request body for PR discovery.

    Attributes:
        auto_trigger: Review pending PRs right after discovery
    """

    auto_trigger: bool = False


class ReviewPRRequest(BaseModel):
    pr_number: int | None = None
    pr_title: str = ""
    pr_url: str = ""


class ReviewPRResponse(BaseModel):
    success: bool = True
    session_id: str
    review_id: str
    message: str


class PRSelection(BaseModel):
    """One pull request chosen for review; accepts the discovery field names too."""

    number: int = Field(validation_alias=AliasChoices("number", "pr_number"))
    title: str = Field(default="", validation_alias=AliasChoices("title", "pr_title"))
    url: str = Field(default="", validation_alias=AliasChoices("url", "pr_url"))


class ReviewPRsRequest(BaseModel):
    prs: list[PRSelection] = Field(default_factory=list)


def _reviewed_count(outcomes: list[ReviewOutcome]) -> int:
    return sum(1 for o in outcomes if o.succeeded)


async def _resolve_project(
    services: PortalServices,
    project_id: str,
    emit: EventSink,
) -> tuple[Project, ReviewTarget] | None:
    """Load a project and its review target, reporting problems as events."""
    async with services.session_factory() as session:
        project = await get_project(session, project_id)
    if project is None:
        await emit(event(EventKind.ERROR, message="Project not found"))
        return None
    try:
        target = ReviewTarget.from_project(project)
    except ConfigurationError as e:
        await emit(event(EventKind.ERROR, message=str(e)))
        return None
    return project, target


def create_pr_check_router() -> APIRouter:
    """Create the PR discovery and review trigger router."""
    router = APIRouter(prefix="/api/projects", tags=["reviews"])

    @router.post("/{project_id:path}/check-prs")
    async def check_prs(
        project_id: str,
        body: CheckPRsRequest | None = None,
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> EventSourceResponse:
        """Stream discovery for a project; with ``auto_trigger`` also review."""
        auto_trigger = body.auto_trigger if body else False

        async def produce(emit: EventSink) -> None:
            await emit(event(EventKind.STATUS, message="Fetching project configuration..."))
            resolved = await _resolve_project(services, project_id, emit)
            if resolved is None:
                return
            project, target = resolved
            if not services.github.is_configured:
                await emit(
                    event(
                        EventKind.ERROR,
                        message="GITHUB_TOKEN not configured. Cannot fetch PRs.",
                    )
                )
                return

            try:
                found = await services.discovery.discover(project, emit)
            except (ConfigurationError, GitHubAPIError) as e:
                await emit(event(EventKind.ERROR, message=str(e)))
                return

            await emit(
                event(
                    EventKind.DONE,
                    message=f"Found {len(found.pending)} PR(s) ready for review.",
                    prs_to_review=[
                        {"pr_number": c.number, "pr_title": c.title} for c in found.pending
                    ],
                )
            )
            if not auto_trigger or not found.pending:
                return

            await emit(event(EventKind.STATUS, message="Starting reviews for pending PRs..."))
            outcomes = await services.orchestrator.run_batch(target, found.pending, emit)
            reviewed = _reviewed_count(outcomes)
            await emit(
                event(
                    EventKind.DONE,
                    message=(
                        f"Review process completed. {reviewed}/{len(outcomes)} "
                        "PR(s) successfully reviewed."
                    ),
                    prs_checked=len(outcomes),
                    prs_reviewed=reviewed,
                )
            )

        return stream_events(produce)

    @router.post("/{project_id:path}/review-pr", response_model=ReviewPRResponse)
    async def review_pr(
        project_id: str,
        body: ReviewPRRequest,
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> ReviewPRResponse:
        """Claim a PR and run its review in the background."""
        if not body.pr_number:
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail="pr_number is required",
            )
        project = await load_project(services.session_factory, project_id)
        try:
            target = ReviewTarget.from_project(project)
        except ConfigurationError as e:
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail=str(e),
            ) from e

        try:
            claim = await services.orchestrator.claim(
                target, body.pr_number, body.pr_title, body.pr_url
            )
        except ReviewAlreadyClaimedError as e:
            raise HTTPException(
                status_code=http_status.HTTP_409_CONFLICT,
                detail=str(e),
            ) from e

        services.tasks.spawn(
            services.orchestrator.execute(claim),
            name=f"review-{claim.review_id}",
        )
        logger.info(
            "manual_review_started",
            project_id=project_id,
            pr_number=body.pr_number,
            review_id=claim.review_id,
        )
        return ReviewPRResponse(
            session_id=claim.session_id,
            review_id=claim.review_id,
            message=f"Review started for PR #{body.pr_number}",
        )

    @router.post("/{project_id:path}/review-prs-stream")
    async def review_prs_stream(
        project_id: str,
        body: ReviewPRsRequest,
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> EventSourceResponse:
        """Review the selected PRs one after another, streaming progress."""
        if not body.prs:
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail="prs array is required",
            )
        now = utcnow()
        candidates = [
            PullRequestCandidate(
                number=pr.number,
                title=pr.title,
                url=pr.url,
                updated_at=now,
                has_trigger_label=True,
            )
            for pr in body.prs
        ]

        async def produce(emit: EventSink) -> None:
            resolved = await _resolve_project(services, project_id, emit)
            if resolved is None:
                return
            _, target = resolved
            outcomes = await services.orchestrator.run_batch(target, candidates, emit)
            reviewed = _reviewed_count(outcomes)
            await emit(
                event(
                    EventKind.DONE,
                    message=f"{reviewed}/{len(outcomes)} PR(s) successfully reviewed.",
                    prs_checked=len(outcomes),
                    prs_reviewed=reviewed,
                )
            )

        return stream_events(produce)

    return router
