"""Reconciliation of claims abandoned by a crashed process.

A review claim is a pending Review row plus a running session. If the
process dies mid-cycle neither row reaches a terminal status, and the
pending row would keep the PR ``in_progress`` forever. Claims older than
``stale_claim_seconds`` are therefore marked failed (and their sessions
errored) before discovery classifies pull requests, which makes those
PRs eligible again.
"""

from __future__ import annotations

from collections.abc import Callable, Collection
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from reviewportal.config import PollingConfig
from reviewportal.database.models.base import utcnow
from reviewportal.database.models.review import ReviewStatus
from reviewportal.database.queries.review import finish_review, list_stale_claims

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = structlog.get_logger(__name__)

ABANDONED_MESSAGE = "abandoned: review process exited before completion"


class StaleClaimReconciler:
    """Fails pending claims that have outlived any plausible run.

    Attributes:
        session_factory: Produces database sessions.
        config: Polling configuration holding ``stale_claim_seconds``.
        active_reviews: Returns the ids of reviews running in this process;
            those are never reconciled.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: PollingConfig,
        active_reviews: Callable[[], Collection[str]] | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.config = config
        self.active_reviews = active_reviews
        self._logger = logger.bind(component="StaleClaimReconciler")

    async def reconcile(self, project_id: str | None = None) -> int:
        """Mark stale claims failed.

        Args:
            project_id: Restrict to one project, or None for all.

        Returns:
            Number of claims reconciled.
        """
        cutoff = utcnow() - timedelta(seconds=self.config.stale_claim_seconds)
        active = set(self.active_reviews()) if self.active_reviews else set()

        reconciled = 0
        async with self.session_factory() as session:
            stale = await list_stale_claims(session, cutoff, project_id)
            for review in stale:
                if review.id in active:
                    continue
                await finish_review(
                    session,
                    review.id,
                    ReviewStatus.failed,
                    error_message=ABANDONED_MESSAGE,
                )
                reconciled += 1
                self._logger.warning(
                    "stale_claim_reconciled",
                    review_id=review.id,
                    project_id=review.project_id,
                    pr_number=review.pr_number,
                )

        if reconciled:
            self._logger.info("stale_claims_reconciled", count=reconciled, project_id=project_id)
        return reconciled
