"""Integration tests for review orchestration.

Runs the orchestrator against the test database, a temporary review
store, the fake agent and a respx-mocked GitHub API.

Tests cover:
- Successful run: state history, stored review, archive, label removal
- Label removal failures never undo a saved review
- Missing artifact or archive failure gives a partial review
- Clone and agent failures give a failed review
- Every exit path removes the workspace
- Duplicate claims are skipped
- Sequential batches isolate failures and never interleave
- reviewed_at is the claim time, so pushes during a run trigger a re-review
- Cancellation marks the review failed and cleans the workspace
"""

from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path

import httpx
import pytest
import respx

from reviewportal.database.models.base import as_utc, utcnow
from reviewportal.database.models.project import Project
from reviewportal.database.models.review import ReviewStatus, ReviewVerdict
from reviewportal.database.models.session import SessionStatus
from reviewportal.database.queries.review import (
    get_review,
    latest_finished_review,
    list_reviews,
)
from reviewportal.database.queries.session import get_session
from reviewportal.errors import CloneError, StoreError
from reviewportal.orchestrator.review_runner import OutcomeStatus, ReviewTarget
from reviewportal.orchestrator.services import PortalServices
from reviewportal.orchestrator.state_machine import ReviewState
from reviewportal.review.discovery import PRReviewStatus, PullRequestCandidate, classify
from reviewportal.review.events import EventKind, ReviewEvent

LABEL_PATH = "/repos/acme/widgets/issues/{number}/labels/ai_codereview"

pytestmark = pytest.mark.integration


@pytest.fixture
def target(project: Project) -> ReviewTarget:
    return ReviewTarget.from_project(project)


@pytest.fixture
def events() -> list[ReviewEvent]:
    return []


@pytest.fixture
def emit(events: list[ReviewEvent]):
    async def _emit(item: ReviewEvent) -> None:
        events.append(item)

    return _emit


def candidate(number: int) -> PullRequestCandidate:
    return PullRequestCandidate(
        number=number,
        title=f"PR {number}",
        url=f"https://github.com/acme/widgets/pull/{number}",
        updated_at=datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
        has_trigger_label=True,
    )


class TestSuccessfulRun:
    async def test_completed_review(
        self,
        services: PortalServices,
        target: ReviewTarget,
        agent_runner,
        fake_clone: list[str],
        github_api: respx.MockRouter,
        emit,
        events: list[ReviewEvent],
    ) -> None:
        label = github_api.delete(LABEL_PATH.format(number=42)).respond(json=[])

        outcome = await services.orchestrator.run_review(
            target, 42, "Add cache", "https://github.com/acme/widgets/pull/42", emit
        )

        assert outcome.status == OutcomeStatus.COMPLETED
        assert outcome.verdict == "request_changes"
        assert outcome.comment_count == 2
        assert outcome.label_removed is True
        assert outcome.states == [
            ReviewState.QUEUED,
            ReviewState.CLONING,
            ReviewState.RUNNING_AGENT,
            ReviewState.SAVING_OUTPUT,
            ReviewState.REMOVING_LABEL,
            ReviewState.DONE,
        ]
        assert label.called
        assert fake_clone == ["https://github.com/acme/widgets.git"]

        call = agent_runner.calls[0]
        assert call["command"] == "codereview"
        assert call["arguments"] == "42 acme/widgets"
        assert not Path(call["directory"]).exists()

        async with services.session_factory() as session:
            review = await get_review(session, outcome.review_id)
            agent_session = await get_session(session, outcome.session_id)
        assert review.status == ReviewStatus.completed
        assert review.verdict == ReviewVerdict.request_changes
        assert review.comment_count == 2
        assert review.reviewed_at is not None
        assert review.review_dir == services.store.review_dir_name(42, "acme/widgets")
        assert agent_session.status == SessionStatus.completed

        archived = services.store.read_review_output(review.review_dir)
        assert archived["verdict"] == "request_changes"
        assert services.store.read_review_summary(review.review_dir).startswith("# Review")

        kinds = [e.kind for e in events]
        assert kinds[0] == EventKind.REVIEW_TRIGGERED
        assert EventKind.CLI_OUTPUT in kinds
        assert EventKind.REVIEW_SAVED in kinds

    @pytest.mark.parametrize("status_code", [404, 500])
    async def test_label_failure_keeps_review(
        self,
        services: PortalServices,
        target: ReviewTarget,
        fake_clone: list[str],
        github_api: respx.MockRouter,
        status_code: int,
    ) -> None:
        github_api.delete(LABEL_PATH.format(number=42)).respond(
            status_code=status_code, json={"message": "nope"}
        )

        outcome = await services.orchestrator.run_review(target, 42)

        assert outcome.status == OutcomeStatus.COMPLETED
        assert outcome.label_removed is False
        assert outcome.states[-1] == ReviewState.DONE
        async with services.session_factory() as session:
            review = await get_review(session, outcome.review_id)
        assert review.status == ReviewStatus.completed


class TestFailures:
    async def test_missing_artifact_is_partial(
        self,
        services: PortalServices,
        target: ReviewTarget,
        agent_runner,
        fake_clone: list[str],
        github_api: respx.MockRouter,
    ) -> None:
        agent_runner.files = {}
        label = github_api.delete(LABEL_PATH.format(number=42)).respond(json=[])

        outcome = await services.orchestrator.run_review(target, 42)

        assert outcome.status == OutcomeStatus.PARTIAL
        assert outcome.states[-1] == ReviewState.PARTIAL
        assert not label.called
        async with services.session_factory() as session:
            review = await get_review(session, outcome.review_id)
        assert review.status == ReviewStatus.partial
        assert review.reviewed_at is not None
        assert review.review_dir == f"pending-{outcome.session_id}"
        assert not Path(agent_runner.calls[0]["directory"]).exists()

    async def test_invalid_artifact_is_partial(
        self,
        services: PortalServices,
        target: ReviewTarget,
        agent_runner,
        fake_clone: list[str],
    ) -> None:
        agent_runner.files = {"review_comments.json": '{"verdict": "merge it"}'}

        outcome = await services.orchestrator.run_review(target, 42)

        assert outcome.status == OutcomeStatus.PARTIAL
        assert "does not match schema" in outcome.error

    async def test_archive_failure_is_partial(
        self,
        services: PortalServices,
        target: ReviewTarget,
        agent_runner,
        fake_clone: list[str],
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        def failing_archive(workspace: Path, review_dir: str) -> Path:
            raise StoreError("review store is read-only")

        monkeypatch.setattr(services.orchestrator.store, "archive_review_output", failing_archive)

        outcome = await services.orchestrator.run_review(target, 42)

        assert outcome.status == OutcomeStatus.PARTIAL
        assert outcome.error == "review store is read-only"
        assert not Path(agent_runner.calls[0]["directory"]).exists()

    async def test_agent_failure(
        self,
        services: PortalServices,
        target: ReviewTarget,
        agent_runner,
        fake_clone: list[str],
        emit,
        events: list[ReviewEvent],
    ) -> None:
        agent_runner.exit_code = 1

        outcome = await services.orchestrator.run_review(target, 42, emit=emit)

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.error == "Agent exited with code 1"
        assert outcome.states[-1] == ReviewState.FAILED
        async with services.session_factory() as session:
            review = await get_review(session, outcome.review_id)
            agent_session = await get_session(session, outcome.session_id)
        assert review.status == ReviewStatus.failed
        assert review.reviewed_at is None
        assert agent_session.status == SessionStatus.error
        assert events[-1].kind == EventKind.REVIEW_ERROR
        assert not Path(agent_runner.calls[0]["directory"]).exists()

    async def test_clone_failure(
        self,
        services: PortalServices,
        target: ReviewTarget,
        agent_runner,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        workspaces: list[Path] = []

        async def failing_clone(url: str, path: Path) -> None:
            workspaces.append(path)
            raise CloneError(f"Failed to clone {url}: repository not found")

        monkeypatch.setattr(
            "reviewportal.orchestrator.review_runner.clone_repository", failing_clone
        )

        outcome = await services.orchestrator.run_review(target, 42)

        assert outcome.status == OutcomeStatus.FAILED
        assert outcome.states == [ReviewState.QUEUED, ReviewState.CLONING, ReviewState.FAILED]
        assert agent_runner.calls == []
        async with services.session_factory() as session:
            review = await get_review(session, outcome.review_id)
        assert "repository not found" in review.error_message
        assert len(workspaces) == 1
        assert not workspaces[0].exists()


class TestClaims:
    async def test_duplicate_claim_skipped(
        self,
        services: PortalServices,
        target: ReviewTarget,
        agent_runner,
        fake_clone: list[str],
    ) -> None:
        await services.orchestrator.claim(target, 42)

        outcome = await services.orchestrator.run_review(target, 42)

        assert outcome.status == OutcomeStatus.SKIPPED
        assert outcome.review_id is None
        assert agent_runner.calls == []

    async def test_active_review_ids(
        self,
        services: PortalServices,
        target: ReviewTarget,
        agent_runner,
        fake_clone: list[str],
    ) -> None:
        agent_runner.block = asyncio.Event()
        agent_runner.started = asyncio.Event()
        agent_runner.files = {}

        task = asyncio.create_task(services.orchestrator.run_review(target, 42))
        await agent_runner.started.wait()
        active = services.orchestrator.active_review_ids()
        agent_runner.block.set()
        outcome = await task

        assert active == {outcome.review_id}
        assert services.orchestrator.active_review_ids() == set()


class TestBatch:
    async def test_sequential_with_isolated_failure(
        self,
        services: PortalServices,
        target: ReviewTarget,
        agent_runner,
        fake_clone: list[str],
        github_api: respx.MockRouter,
    ) -> None:
        agent_runner.failing_prs = {2}
        for number in (1, 3):
            github_api.delete(LABEL_PATH.format(number=number)).respond(json=[])

        outcomes = await services.orchestrator.run_batch(
            target, [candidate(1), candidate(2), candidate(3)]
        )

        assert [o.pr_number for o in outcomes] == [1, 2, 3]
        assert [o.status for o in outcomes] == [
            OutcomeStatus.COMPLETED,
            OutcomeStatus.FAILED,
            OutcomeStatus.COMPLETED,
        ]
        assert [c["arguments"] for c in agent_runner.calls] == [
            "1 acme/widgets",
            "2 acme/widgets",
            "3 acme/widgets",
        ]
        async with services.session_factory() as session:
            reviews = await list_reviews(session, project_id=target.project_id)
        assert len(reviews) == 3

    async def test_one_review_at_a_time(
        self,
        services: PortalServices,
        target: ReviewTarget,
        agent_runner,
        github_api: respx.MockRouter,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        steps: list[str] = []
        agent_runner.failing_prs = {2}
        run_agent = agent_runner.run

        async def clone(url: str, path: Path) -> None:
            steps.append("clone")
            await asyncio.sleep(0)

        async def tracked_run(command: str, directory: Path, arguments: str, **kwargs):
            steps.append(f"agent {arguments.split()[0]}")
            await asyncio.sleep(0.01)
            return await run_agent(command, directory, arguments, **kwargs)

        def label_removed(number: int):
            def respond(request: httpx.Request) -> httpx.Response:
                steps.append(f"label {number}")
                return httpx.Response(200, json=[])

            return respond

        monkeypatch.setattr("reviewportal.orchestrator.review_runner.clone_repository", clone)
        monkeypatch.setattr(agent_runner, "run", tracked_run)
        for number in (1, 3):
            github_api.delete(LABEL_PATH.format(number=number)).mock(
                side_effect=label_removed(number)
            )

        await services.orchestrator.run_batch(target, [candidate(1), candidate(2), candidate(3)])

        assert steps == [
            "clone",
            "agent 1",
            "label 1",
            "clone",
            "agent 2",
            "clone",
            "agent 3",
            "label 3",
        ]


class TestCancellation:
    async def test_cancel_marks_failed(
        self,
        services: PortalServices,
        target: ReviewTarget,
        agent_runner,
        fake_clone: list[str],
    ) -> None:
        agent_runner.block = asyncio.Event()
        agent_runner.started = asyncio.Event()

        task = asyncio.create_task(services.orchestrator.run_review(target, 42))
        await agent_runner.started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not Path(agent_runner.calls[0]["directory"]).exists()
        async with services.session_factory() as session:
            reviews = await list_reviews(session, project_id=target.project_id)
        assert len(reviews) == 1
        assert reviews[0].status == ReviewStatus.failed
        assert reviews[0].error_message == "cancelled"


class TestReviewedAt:
    async def test_push_during_review_is_reviewed_again(
        self,
        services: PortalServices,
        target: ReviewTarget,
        agent_runner,
        fake_clone: list[str],
        github_api: respx.MockRouter,
    ) -> None:
        github_api.delete(LABEL_PATH.format(number=42)).respond(json=[])
        agent_runner.block = asyncio.Event()
        agent_runner.started = asyncio.Event()

        task = asyncio.create_task(services.orchestrator.run_review(target, 42))
        await agent_runner.started.wait()
        pushed_at = utcnow()
        agent_runner.block.set()
        outcome = await task

        assert outcome.status == OutcomeStatus.COMPLETED
        async with services.session_factory() as session:
            review = await latest_finished_review(session, target.project_id, 42)
        assert as_utc(review.reviewed_at) < pushed_at

        pushed = replace(candidate(42), updated_at=pushed_at)
        assert classify(pushed, review).status == PRReviewStatus.PENDING_REVIEW
        assert classify(candidate(42), review).status == PRReviewStatus.ALREADY_REVIEWED
