"""Integration tests for the database query layer.

Tests cover:
- Project upsert keeps user-edited fields
- Review claims: one pending claim per pull request
- finish_review stamps reviews with their claim time and closes their sessions
- Finished-review lookups ignore failed attempts
- Stale claim reconciliation
- Document revision numbering and global settings
"""

from __future__ import annotations

from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from reviewportal.config import PollingConfig
from reviewportal.database.models.base import as_utc, utcnow
from reviewportal.database.models.review import ReviewStatus, ReviewVerdict
from reviewportal.database.models.session import SessionStatus, SessionType
from reviewportal.database.queries.document import add_version, latest_version, list_versions
from reviewportal.database.queries.project import (
    delete_project,
    get_project,
    list_pollable_projects,
    update_project,
    upsert_project,
)
from reviewportal.database.queries.review import (
    claim_review,
    finish_review,
    get_pending_claim,
    get_review,
    latest_completed_review,
    latest_finished_review,
    list_stale_claims,
    review_stats,
    update_review,
)
from reviewportal.database.queries.session import (
    create_session,
    end_session,
    get_session,
    set_agent_session_id,
)
from reviewportal.database.queries.settings import get_setting, set_setting
from reviewportal.errors import ReviewAlreadyClaimedError
from reviewportal.orchestrator.recovery import ABANDONED_MESSAGE, StaleClaimReconciler

PROJECT_ID = "github.com/acme/widgets"

pytestmark = pytest.mark.integration


@pytest_asyncio.fixture
async def seeded(db_session: AsyncSession) -> AsyncSession:
    """Session with the acme/widgets project inserted."""
    await upsert_project(
        db_session,
        PROJECT_ID,
        "widgets",
        "https://github.com/acme/widgets.git",
        "/store/projects/github.com/acme/widgets",
    )
    return db_session


async def claim(session: AsyncSession, suffix: str, pr_number: int = 42):
    return await claim_review(
        session,
        review_id=f"{PROJECT_ID}-pr-{pr_number}-{suffix}",
        session_id=f"cli-{suffix}",
        project_id=PROJECT_ID,
        pr_number=pr_number,
        repository="acme/widgets",
        pr_title="Add cache",
    )


class TestProjects:
    async def test_upsert_preserves_user_fields(self, seeded: AsyncSession) -> None:
        await update_project(
            seeded, PROJECT_ID, display_name="Widgets API", review_trigger_label="needs-review"
        )

        project = await upsert_project(
            seeded,
            PROJECT_ID,
            "widgets",
            "git@github.com:acme/widgets.git",
            "/new/store",
        )

        assert project.display_name == "Widgets API"
        assert project.review_trigger_label == "needs-review"
        assert project.git_remote == "git@github.com:acme/widgets.git"
        assert project.store_path == "/new/store"

    async def test_defaults(self, seeded: AsyncSession) -> None:
        project = await get_project(seeded, PROJECT_ID)

        assert project is not None
        assert project.review_trigger_label == "ai_codereview"
        assert project.auto_review_enabled is True
        assert project.polling_enabled is False
        assert project.post_clone_scripts == []

    async def test_pollable_requires_both_flags(self, seeded: AsyncSession) -> None:
        assert await list_pollable_projects(seeded) == []

        await update_project(seeded, PROJECT_ID, polling_enabled=True)
        assert [p.id for p in await list_pollable_projects(seeded)] == [PROJECT_ID]

        await update_project(seeded, PROJECT_ID, auto_review_enabled=False)
        assert await list_pollable_projects(seeded) == []

    async def test_update_missing_project(self, db_session: AsyncSession) -> None:
        with pytest.raises(ValueError, match="not found"):
            await update_project(db_session, "github.com/nobody/nothing", polling_enabled=True)

    async def test_delete_cascades_reviews(self, seeded: AsyncSession) -> None:
        review = await claim(seeded, "1")

        assert await delete_project(seeded, PROJECT_ID) is True
        seeded.expunge_all()

        assert await get_project(seeded, PROJECT_ID) is None
        assert await get_review(seeded, review.id) is None
        assert await delete_project(seeded, PROJECT_ID) is False


class TestClaims:
    """Test the one-pending-claim-per-PR guarantee."""

    async def test_claim_creates_pending_review_and_session(self, seeded: AsyncSession) -> None:
        review = await claim(seeded, "1")

        assert review.status == ReviewStatus.pending
        assert review.review_dir == "pending-cli-1"
        assert review.reviewed_at is None

        agent_session = await get_session(seeded, "cli-1")
        assert agent_session is not None
        assert agent_session.type == SessionType.review
        assert agent_session.status == SessionStatus.running

    async def test_second_claim_rejected(self, seeded: AsyncSession) -> None:
        await claim(seeded, "1")

        with pytest.raises(ReviewAlreadyClaimedError):
            await claim(seeded, "2")

        pending = await get_pending_claim(seeded, PROJECT_ID, 42)
        assert pending is not None
        assert pending.session_id == "cli-1"
        assert await get_session(seeded, "cli-2") is None

    async def test_other_pr_can_be_claimed(self, seeded: AsyncSession) -> None:
        await claim(seeded, "1", pr_number=42)
        other = await claim(seeded, "2", pr_number=43)
        assert other.status == ReviewStatus.pending

    async def test_claim_allowed_after_finish(self, seeded: AsyncSession) -> None:
        first = await claim(seeded, "1")
        await finish_review(seeded, first.id, ReviewStatus.failed, error_message="boom")

        second = await claim(seeded, "2")

        assert second.status == ReviewStatus.pending


class TestFinishReview:
    async def test_completed(self, seeded: AsyncSession) -> None:
        review = await claim(seeded, "1")

        finished = await finish_review(
            seeded,
            review.id,
            ReviewStatus.completed,
            review_dir="2026-03-01_PR-42_widgets",
            verdict=ReviewVerdict.request_changes,
            comment_count=2,
            review_output='{"verdict": "request_changes"}',
        )

        assert finished.status == ReviewStatus.completed
        assert finished.reviewed_at is not None
        assert finished.verdict == ReviewVerdict.request_changes
        assert finished.review_dir == "2026-03-01_PR-42_widgets"

        agent_session = await get_session(seeded, "cli-1")
        assert agent_session.status == SessionStatus.completed
        assert agent_session.completed_at is not None

    @pytest.mark.parametrize("status", [ReviewStatus.completed, ReviewStatus.partial])
    async def test_reviewed_at_is_claim_time(
        self, seeded: AsyncSession, status: ReviewStatus
    ) -> None:
        review = await claim(seeded, "1")
        claimed_at = as_utc(review.created_at)

        finished = await finish_review(seeded, review.id, status)

        assert as_utc(finished.reviewed_at) == claimed_at

    async def test_failed(self, seeded: AsyncSession) -> None:
        review = await claim(seeded, "1")

        finished = await finish_review(
            seeded, review.id, ReviewStatus.failed, error_message="Agent exited with code 1"
        )

        assert finished.reviewed_at is None
        assert finished.review_dir == "pending-cli-1"
        agent_session = await get_session(seeded, "cli-1")
        assert agent_session.status == SessionStatus.error
        assert agent_session.error_message == "Agent exited with code 1"

    async def test_missing_review(self, db_session: AsyncSession) -> None:
        with pytest.raises(ValueError, match="not found"):
            await finish_review(db_session, "nope", ReviewStatus.completed)


class TestFinishedLookups:
    async def test_latest_finished_ignores_failed(self, seeded: AsyncSession) -> None:
        partial = await claim(seeded, "1")
        await finish_review(seeded, partial.id, ReviewStatus.partial)
        failed = await claim(seeded, "2")
        await finish_review(seeded, failed.id, ReviewStatus.failed, error_message="x")

        latest = await latest_finished_review(seeded, PROJECT_ID, 42)

        assert latest is not None
        assert latest.id == partial.id
        assert await latest_completed_review(seeded, PROJECT_ID, 42) is None

    async def test_latest_completed(self, seeded: AsyncSession) -> None:
        review = await claim(seeded, "1")
        await finish_review(seeded, review.id, ReviewStatus.completed)

        latest = await latest_completed_review(seeded, PROJECT_ID, 42)

        assert latest is not None
        assert latest.id == review.id
        assert await latest_finished_review(seeded, PROJECT_ID, 99) is None

    async def test_review_stats(self, seeded: AsyncSession) -> None:
        first = await claim(seeded, "1")
        await finish_review(seeded, first.id, ReviewStatus.completed)
        await claim(seeded, "2", pr_number=43)

        count, last_reviewed = (await review_stats(seeded))[PROJECT_ID]

        assert count == 2
        assert last_reviewed is not None


class TestStaleClaims:
    """Test reconciliation of claims left behind by a crashed process."""

    async def age(self, session: AsyncSession, review_id: str, hours: int) -> None:
        await update_review(session, review_id, created_at=utcnow() - timedelta(hours=hours))

    async def test_list_stale_claims(self, seeded: AsyncSession) -> None:
        old = await claim(seeded, "1", pr_number=42)
        await claim(seeded, "2", pr_number=43)
        await self.age(seeded, old.id, hours=3)

        stale = await list_stale_claims(seeded, utcnow() - timedelta(hours=1))

        assert [r.id for r in stale] == [old.id]

    async def test_reconciler_fails_stale_claims(
        self,
        seeded: AsyncSession,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        old = await claim(seeded, "1", pr_number=42)
        running = await claim(seeded, "2", pr_number=43)
        fresh = await claim(seeded, "3", pr_number=44)
        await self.age(seeded, old.id, hours=3)
        await self.age(seeded, running.id, hours=3)

        reconciler = StaleClaimReconciler(
            session_factory,
            PollingConfig(stale_claim_seconds=3600),
            active_reviews=lambda: {running.id},
        )

        assert await reconciler.reconcile() == 1

        async with session_factory() as session:
            assert (await get_review(session, old.id)).status == ReviewStatus.failed
            assert (await get_review(session, old.id)).error_message == ABANDONED_MESSAGE
            assert (await get_review(session, running.id)).status == ReviewStatus.pending
            assert (await get_review(session, fresh.id)).status == ReviewStatus.pending
            assert (await get_session(session, "cli-1")).status == SessionStatus.error

        # PR 42 can be claimed again.
        again = await claim(seeded, "4", pr_number=42)
        assert again.status == ReviewStatus.pending


class TestSessions:
    async def test_lifecycle(self, seeded: AsyncSession) -> None:
        await create_session(seeded, "init-1", PROJECT_ID, SessionType.init)
        await set_agent_session_id(seeded, "init-1", "ses_abc")

        ended = await end_session(seeded, "init-1", SessionStatus.completed, progress="done")

        assert ended is not None
        assert ended.agent_session_id == "ses_abc"
        assert ended.status == SessionStatus.completed
        assert ended.progress == "done"
        assert await end_session(seeded, "missing", SessionStatus.error) is None


class TestDocumentsAndSettings:
    async def test_version_numbering_per_document(self, seeded: AsyncSession) -> None:
        first = await add_version(seeded, PROJECT_ID, None, "# v1")
        second = await add_version(seeded, PROJECT_ID, None, "# v2")
        module = await add_version(seeded, PROJECT_ID, "api", "# api v1")

        assert (first.version, second.version, module.version) == (1, 2, 1)
        assert (await latest_version(seeded, PROJECT_ID, None)).content == "# v2"
        assert [v.version for v in await list_versions(seeded, PROJECT_ID, None)] == [2, 1]
        assert await latest_version(seeded, PROJECT_ID, "web") is None

    async def test_global_settings(self, db_session: AsyncSession) -> None:
        assert await get_setting(db_session, "review_model") is None

        await set_setting(db_session, "review_model", "anthropic/claude-sonnet")
        await set_setting(db_session, "review_model", "anthropic/claude-opus")

        assert await get_setting(db_session, "review_model") == "anthropic/claude-opus"
