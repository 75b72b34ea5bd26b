"""Pull request discovery.

For one project: fetch open pull requests (most recently updated first),
keep those carrying the project's trigger label and classify each one
against the review history.

Classification policy:

- an open claim (pending review) makes the PR ``in_progress``
- no completed or partial review makes it ``pending_review``
- a PR updated strictly after its last completed/partial review's
  ``reviewed_at`` is ``pending_review`` again
- otherwise it is ``already_reviewed``

Failed attempts are ignored, so a PR whose last run failed is retried on
the next pass.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from reviewportal.database.models.base import as_utc
from reviewportal.database.models.project import Project
from reviewportal.database.models.review import Review
from reviewportal.database.queries.review import get_pending_claim, latest_finished_review
from reviewportal.forge.github import GitHubClient, PullRequestInfo
from reviewportal.forge.remote import require_remote
from reviewportal.logging import get_logger
from reviewportal.review.events import EventKind, EventSink, event, null_sink

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from reviewportal.orchestrator.recovery import StaleClaimReconciler

logger = get_logger(__name__)


class PRReviewStatus(str, Enum):
    PENDING_REVIEW = "pending_review"
    ALREADY_REVIEWED = "already_reviewed"
    IN_PROGRESS = "in_progress"


@dataclass(frozen=True)
class PullRequestCandidate:
    """One open pull request seen during a discovery pass.

    Attributes:
        number: Pull request number
        title: Pull request title
        url: Browser URL
        updated_at: Last update reported by GitHub (UTC)
        has_trigger_label: Whether the project's trigger label is applied
    """

    number: int
    title: str
    url: str
    updated_at: datetime
    has_trigger_label: bool

    @classmethod
    def from_pull(cls, pull: PullRequestInfo, trigger_label: str) -> PullRequestCandidate:
        return cls(
            number=pull.number,
            title=pull.title,
            url=pull.html_url,
            updated_at=as_utc(pull.updated_at),
            has_trigger_label=pull.has_label(trigger_label),
        )


@dataclass
class PRClassification:
    candidate: PullRequestCandidate
    status: PRReviewStatus
    reviewed_at: datetime | None = None

    def to_event_data(self) -> dict[str, object]:
        return {
            "pr_number": self.candidate.number,
            "pr_title": self.candidate.title,
            "status": self.status.value,
            "reviewed_at": self.reviewed_at.isoformat() if self.reviewed_at else None,
        }


@dataclass
class DiscoveryResult:
    """Label-matching candidates and the subset that needs a review."""

    candidates: list[PullRequestCandidate] = field(default_factory=list)
    pending: list[PullRequestCandidate] = field(default_factory=list)
    classifications: list[PRClassification] = field(default_factory=list)


def classify(
    candidate: PullRequestCandidate,
    last_review: Review | None,
    open_claim: Review | None = None,
) -> PRClassification:
    """Decide whether a labelled pull request needs a review."""
    if open_claim is not None:
        return PRClassification(candidate, PRReviewStatus.IN_PROGRESS)
    if last_review is None or last_review.reviewed_at is None:
        return PRClassification(candidate, PRReviewStatus.PENDING_REVIEW)

    reviewed_at = as_utc(last_review.reviewed_at)
    if candidate.updated_at > reviewed_at:
        return PRClassification(candidate, PRReviewStatus.PENDING_REVIEW, reviewed_at)
    return PRClassification(candidate, PRReviewStatus.ALREADY_REVIEWED, reviewed_at)


class PRDiscovery:
    """Runs discovery passes against GitHub and the review history."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        github: GitHubClient,
        reconciler: StaleClaimReconciler | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.github = github
        self.reconciler = reconciler
        self.logger = logger.bind(component="pr_discovery")

    async def discover(self, project: Project, emit: EventSink = null_sink) -> DiscoveryResult:
        """Discover labelled pull requests and classify them.

        Raises:
            ConfigurationError: If the remote cannot be parsed or no token
                is configured.
            GitHubAPIError: If listing pull requests fails.
        """
        ref = require_remote(project.git_remote)
        trigger_label = project.review_trigger_label

        await emit(event(EventKind.STATUS, message=f"Project: {project.git_remote}"))
        await emit(event(EventKind.STATUS, message=f"Trigger label: {trigger_label}"))

        if self.reconciler is not None:
            reconciled = await self.reconciler.reconcile(project.id)
            if reconciled:
                await emit(
                    event(
                        EventKind.INFO,
                        message=f"Marked {reconciled} abandoned review(s) as failed",
                    )
                )

        await emit(event(EventKind.STATUS, message="Fetching open pull requests..."))
        pulls = await self.github.list_open_pulls(ref.owner, ref.repo)
        await emit(event(EventKind.STATUS, message=f"Found {len(pulls)} open PRs"))

        candidates = [
            candidate
            for candidate in (PullRequestCandidate.from_pull(p, trigger_label) for p in pulls)
            if candidate.has_trigger_label
        ]
        await emit(
            event(
                EventKind.INFO,
                message=f'Found {len(candidates)} PR(s) with label "{trigger_label}"',
            )
        )

        result = DiscoveryResult(candidates=candidates)
        async with self.session_factory() as session:
            for candidate in candidates:
                open_claim = await get_pending_claim(session, project.id, candidate.number)
                last_review = await latest_finished_review(session, project.id, candidate.number)
                classification = classify(candidate, last_review, open_claim)
                result.classifications.append(classification)
                if classification.status == PRReviewStatus.PENDING_REVIEW:
                    result.pending.append(candidate)
                await emit(event(EventKind.PR_STATUS, **classification.to_event_data()))

        await emit(
            event(
                EventKind.PRS_FOUND,
                count=len(candidates),
                prs=[c.to_event_data() for c in result.classifications],
            )
        )
        self.logger.info(
            "discovery_completed",
            project_id=project.id,
            open_prs=len(pulls),
            labelled=len(candidates),
            pending=len(result.pending),
        )
        return result
