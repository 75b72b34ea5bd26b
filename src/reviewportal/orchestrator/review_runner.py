"""Review orchestration for single pull requests and sequential batches.

For each pull request the orchestrator claims the PR (pending Review row
plus running session, inserted before any work starts), acquires a
temporary workspace, shallow-clones the repository, runs the review
agent, archives and records the review artifact and finally removes the
trigger label. The workspace is released on every exit path.

Batches run strictly one PR after another.
"""

from __future__ import annotations

import asyncio
import secrets
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from reviewportal.agents.result_schema import load_review_output
from reviewportal.config import AgentConfig
from reviewportal.database.models.project import Project
from reviewportal.database.models.review import ReviewStatus, ReviewVerdict
from reviewportal.database.queries.review import claim_review, finish_review
from reviewportal.database.queries.session import set_agent_session_id
from reviewportal.errors import (
    AgentRunError,
    CloneError,
    GitHubAPIError,
    ReviewAlreadyClaimedError,
    ReviewOutputError,
    StoreError,
)
from reviewportal.forge.remote import require_remote
from reviewportal.logging import bind_review_context, clear_review_context
from reviewportal.orchestrator.state_machine import ReviewState, ReviewStateTracker
from reviewportal.pipeline.workspace import acquire_workspace, clone_repository
from reviewportal.review.events import EventKind, EventSink, event, null_sink

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from reviewportal.agents.runner import AgentRunner
    from reviewportal.forge.github import GitHubClient
    from reviewportal.review.discovery import PullRequestCandidate
    from reviewportal.store.documents import ReviewStore

logger = structlog.get_logger(__name__)


def _unique_suffix() -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}"


def new_review_id(project_id: str, pr_number: int) -> str:
    """``<project_id>-pr-<n>-<epoch ms>-<hex>``; unique across repeated attempts."""
    return f"{project_id}-pr-{pr_number}-{_unique_suffix()}"


def new_session_id(mode: str) -> str:
    return f"{mode}-{_unique_suffix()}"


@dataclass(frozen=True)
class ReviewTarget:
    """Project attributes needed for a review run.

    Detached from the ORM so runs never touch an expired instance.
    """

    project_id: str
    git_remote: str
    owner: str
    repo: str
    trigger_label: str
    review_model: str | None = None

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    @classmethod
    def from_project(cls, project: Project) -> ReviewTarget:
        """Build a target from a project row.

        Raises:
            ConfigurationError: If the project's remote cannot be parsed.
        """
        ref = require_remote(project.git_remote)
        return cls(
            project_id=project.id,
            git_remote=project.git_remote,
            owner=ref.owner,
            repo=ref.repo,
            trigger_label=project.review_trigger_label,
            review_model=project.review_model,
        )


@dataclass(frozen=True)
class ReviewClaim:
    review_id: str
    session_id: str
    target: ReviewTarget
    pr_number: int
    pr_title: str = ""
    pr_url: str = ""


class OutcomeStatus(str, Enum):
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class ReviewOutcome:
    """Result of orchestrating one pull request.

    Attributes:
        pr_number: Pull request number
        status: completed, partial, failed or skipped (already claimed)
        review_id: Review row id, None when skipped
        session_id: Session row id, None when skipped
        verdict: Verdict of a completed review
        comment_count: Inline comment count of a completed review
        label_removed: Whether the trigger label was removed by this run
        error: Failure or partial-success reason
        states: States the run passed through
    """

    pr_number: int
    status: OutcomeStatus
    review_id: str | None = None
    session_id: str | None = None
    verdict: str | None = None
    comment_count: int = 0
    label_removed: bool = False
    error: str | None = None
    states: list[ReviewState] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.COMPLETED


class ReviewOrchestrator:
    """Drives review runs through the review state machine.

    Attributes:
        session_factory: Produces database sessions.
        store: Review store receiving archived artifacts.
        github: GitHub client used for label removal.
        runner: Agent runner invoking the review command.
        config: Agent configuration (command names, artifact file name).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        store: ReviewStore,
        github: GitHubClient,
        runner: AgentRunner,
        config: AgentConfig,
    ) -> None:
        self.session_factory = session_factory
        self.store = store
        self.github = github
        self.runner = runner
        self.config = config
        self._active: set[str] = set()
        self._logger = logger.bind(component="ReviewOrchestrator")

    def active_review_ids(self) -> set[str]:
        """Reviews currently executing in this process."""
        return set(self._active)

    async def claim(
        self,
        target: ReviewTarget,
        pr_number: int,
        pr_title: str = "",
        pr_url: str = "",
    ) -> ReviewClaim:
        """Insert the claim rows for a pull request.

        Raises:
            ReviewAlreadyClaimedError: If another run holds the PR.
        """
        claim = ReviewClaim(
            review_id=new_review_id(target.project_id, pr_number),
            session_id=new_session_id(self.config.mode),
            target=target,
            pr_number=pr_number,
            pr_title=pr_title,
            pr_url=pr_url,
        )
        async with self.session_factory() as session:
            await claim_review(
                session,
                review_id=claim.review_id,
                session_id=claim.session_id,
                project_id=target.project_id,
                pr_number=pr_number,
                repository=target.repository,
                pr_title=pr_title,
                pr_url=pr_url,
            )
        return claim

    async def execute(self, claim: ReviewClaim, emit: EventSink = null_sink) -> ReviewOutcome:
        """Run a claimed review to a terminal state.

        Clone and agent failures mark the review failed; a missing or
        invalid artifact marks it partial. Neither raises. Cancellation
        marks the review failed and propagates.
        """
        target = claim.target
        tracker = ReviewStateTracker(claim.review_id)
        outcome = ReviewOutcome(
            pr_number=claim.pr_number,
            status=OutcomeStatus.FAILED,
            review_id=claim.review_id,
            session_id=claim.session_id,
            states=tracker.history,
        )
        self._active.add(claim.review_id)
        bind_review_context(target.project_id, claim.pr_number, claim.session_id)

        await emit(
            event(
                EventKind.REVIEW_TRIGGERED,
                pr_number=claim.pr_number,
                pr_title=claim.pr_title,
                review_id=claim.review_id,
                session_id=claim.session_id,
            )
        )

        try:
            async with acquire_workspace() as workspace:
                tracker.advance(ReviewState.CLONING)
                await emit(event(EventKind.STATUS, message=f"Cloning {target.git_remote}..."))
                await clone_repository(target.git_remote, workspace)
                await emit(event(EventKind.STATUS, message="Repository cloned."))

                tracker.advance(ReviewState.RUNNING_AGENT)
                running = f"Running {self.config.review_command} for PR #{claim.pr_number}..."
                await emit(event(EventKind.STATUS, message=running))

                async def forward(line: str) -> None:
                    await emit(event(EventKind.CLI_OUTPUT, pr_number=claim.pr_number, message=line))

                async def link_agent_session(agent_session_id: str) -> None:
                    async with self.session_factory() as session:
                        await set_agent_session_id(session, claim.session_id, agent_session_id)

                result = await self.runner.run(
                    self.config.review_command,
                    workspace,
                    f"{claim.pr_number} {target.repository}",
                    sink=forward,
                    model=target.review_model,
                    on_started=link_agent_session,
                )
                result.raise_for_failure()

                tracker.advance(ReviewState.SAVING_OUTPUT)
                try:
                    output, raw_output = load_review_output(workspace / self.config.output_filename)
                    review_dir = self.store.review_dir_name(claim.pr_number, target.repository)
                    await asyncio.to_thread(self.store.archive_review_output, workspace, review_dir)
                except (ReviewOutputError, StoreError) as e:
                    self._logger.warning("review_output_unavailable", error=str(e))
                    tracker.advance(ReviewState.PARTIAL)
                    async with self.session_factory() as session:
                        await finish_review(
                            session,
                            claim.review_id,
                            ReviewStatus.partial,
                            error_message=str(e),
                        )
                    await emit(
                        event(
                            EventKind.REVIEW_ERROR,
                            pr_number=claim.pr_number,
                            pr_title=claim.pr_title,
                            error=f"Agent finished but review output could not be saved: {e}",
                        )
                    )
                    outcome.status = OutcomeStatus.PARTIAL
                    outcome.error = str(e)
                    return outcome

                async with self.session_factory() as session:
                    await finish_review(
                        session,
                        claim.review_id,
                        ReviewStatus.completed,
                        review_dir=review_dir,
                        verdict=ReviewVerdict(output.verdict),
                        comment_count=len(output.comments),
                        review_output=raw_output,
                    )
                outcome.status = OutcomeStatus.COMPLETED
                outcome.verdict = output.verdict
                outcome.comment_count = len(output.comments)
                await emit(
                    event(
                        EventKind.REVIEW_SAVED,
                        pr_number=claim.pr_number,
                        review_id=claim.review_id,
                        verdict=output.verdict,
                        comment_count=len(output.comments),
                    )
                )

                tracker.advance(ReviewState.REMOVING_LABEL)
                outcome.label_removed = await self._remove_label(claim, emit)
                tracker.advance(ReviewState.DONE)
                return outcome

        except (CloneError, AgentRunError) as e:
            tracker.fail()
            await self._mark_failed(claim, str(e), emit)
            outcome.error = str(e)
            return outcome
        except asyncio.CancelledError:
            if outcome.status == OutcomeStatus.FAILED:
                tracker.fail()
                await self._mark_failed(claim, "cancelled", emit)
            raise
        except Exception as e:
            self._logger.error(
                "review_run_crashed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            if outcome.status == OutcomeStatus.FAILED:
                tracker.fail()
                await self._mark_failed(claim, f"{type(e).__name__}: {e}", emit)
                outcome.error = str(e)
            return outcome
        finally:
            self._active.discard(claim.review_id)
            self._logger.info(
                "review_run_finished",
                review_id=claim.review_id,
                state=tracker.state.value,
            )
            clear_review_context()

    async def _remove_label(self, claim: ReviewClaim, emit: EventSink) -> bool:
        """Best-effort label removal; a failure never undoes the review."""
        target = claim.target
        await emit(event(EventKind.STATUS, message=f'Removing label "{target.trigger_label}"...'))
        try:
            removed = await self.github.remove_label(
                target.owner, target.repo, claim.pr_number, target.trigger_label
            )
        except GitHubAPIError as e:
            self._logger.warning("label_removal_failed", error=str(e), status_code=e.status_code)
            await emit(event(EventKind.STATUS, message=f"Could not remove label: {e}"))
            return False
        await emit(
            event(
                EventKind.STATUS,
                message="Label removed." if removed else "Label already absent.",
            )
        )
        return removed

    async def _mark_failed(self, claim: ReviewClaim, reason: str, emit: EventSink) -> None:
        self._logger.warning("review_failed", review_id=claim.review_id, error=reason)
        async with self.session_factory() as session:
            await finish_review(session, claim.review_id, ReviewStatus.failed, error_message=reason)
        await emit(
            event(
                EventKind.REVIEW_ERROR,
                pr_number=claim.pr_number,
                pr_title=claim.pr_title,
                error=reason,
            )
        )

    async def run_review(
        self,
        target: ReviewTarget,
        pr_number: int,
        pr_title: str = "",
        pr_url: str = "",
        emit: EventSink = null_sink,
    ) -> ReviewOutcome:
        """Claim and execute one pull request; an existing claim skips it."""
        try:
            claim = await self.claim(target, pr_number, pr_title, pr_url)
        except ReviewAlreadyClaimedError as e:
            await emit(
                event(
                    EventKind.STATUS,
                    message=f"PR #{pr_number} already has a review in progress, skipping.",
                )
            )
            return ReviewOutcome(pr_number=pr_number, status=OutcomeStatus.SKIPPED, error=str(e))
        return await self.execute(claim, emit)

    async def run_batch(
        self,
        target: ReviewTarget,
        candidates: list[PullRequestCandidate],
        emit: EventSink = null_sink,
    ) -> list[ReviewOutcome]:
        """Review candidates one at a time, in order.

        A failure on one pull request never stops the rest of the batch.
        """
        outcomes = []
        for candidate in candidates:
            await emit(
                event(
                    EventKind.STATUS,
                    message=f"Starting review for PR #{candidate.number}: {candidate.title}",
                )
            )
            outcome = await self.run_review(
                target,
                candidate.number,
                candidate.title,
                candidate.url,
                emit,
            )
            outcomes.append(outcome)

        self._logger.info(
            "review_batch_finished",
            project_id=target.project_id,
            total=len(outcomes),
            completed=sum(1 for o in outcomes if o.succeeded),
        )
        return outcomes
