"""Review query functions for Review Portal.

Besides plain CRUD this module owns the claim protocol: a pending Review
row and its running ReviewSession are inserted in one transaction, and
the partial unique index on pending reviews turns a concurrent second
claim into ReviewAlreadyClaimedError.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from reviewportal.database.models.base import utcnow
from reviewportal.database.models.review import Review, ReviewStatus, ReviewVerdict
from reviewportal.database.models.session import ReviewSession, SessionStatus, SessionType
from reviewportal.errors import ReviewAlreadyClaimedError

logger = structlog.get_logger(__name__)

FINISHED_STATUSES = (ReviewStatus.completed, ReviewStatus.partial)


def pending_review_dir(session_id: str) -> str:
    """Placeholder review_dir used while a claim is open."""
    return f"pending-{session_id}"


async def claim_review(
    session: AsyncSession,
    review_id: str,
    session_id: str,
    project_id: str,
    pr_number: int,
    repository: str,
    pr_title: str = "",
    pr_url: str = "",
) -> Review:
    """Insert a running session and a pending review for a pull request.

    Args:
        session: Active async database session.
        review_id: Unique id for the new review row.
        session_id: Unique id for the new session row.
        project_id: Owning project.
        pr_number: Pull request number.
        repository: "owner/repo".
        pr_title: Pull request title.
        pr_url: Pull request HTML URL.

    Returns:
        The pending Review instance.

    Raises:
        ReviewAlreadyClaimedError: If a pending review exists for the PR.
    """
    session.add(
        ReviewSession(
            id=session_id,
            project_id=project_id,
            type=SessionType.review,
            status=SessionStatus.running,
        )
    )
    review = Review(
        id=review_id,
        project_id=project_id,
        pr_number=pr_number,
        pr_title=pr_title,
        pr_url=pr_url,
        repository=repository,
        review_dir=pending_review_dir(session_id),
        status=ReviewStatus.pending,
        session_id=session_id,
    )
    session.add(review)

    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        logger.info("review_claim_rejected", project_id=project_id, pr_number=pr_number)
        raise ReviewAlreadyClaimedError(project_id, pr_number) from e

    logger.info(
        "review_claimed",
        review_id=review_id,
        session_id=session_id,
        project_id=project_id,
        pr_number=pr_number,
    )
    return review


async def get_review(session: AsyncSession, review_id: str) -> Review | None:
    """Retrieve a review by ID."""
    result = await session.execute(select(Review).where(Review.id == review_id))
    return result.scalar_one_or_none()


async def get_pending_claim(
    session: AsyncSession,
    project_id: str,
    pr_number: int,
) -> Review | None:
    """Return the open claim for a pull request, if any."""
    stmt = (
        select(Review)
        .where(Review.project_id == project_id)
        .where(Review.pr_number == pr_number)
        .where(Review.status == ReviewStatus.pending)
    )
    result = await session.execute(stmt)
    return result.scalars().first()


async def latest_finished_review(
    session: AsyncSession,
    project_id: str,
    pr_number: int,
) -> Review | None:
    """Most recent completed or partial review for a pull request.

    Failed attempts are ignored so that the next discovery pass retries them.
    """
    stmt = (
        select(Review)
        .where(Review.project_id == project_id)
        .where(Review.pr_number == pr_number)
        .where(Review.status.in_(FINISHED_STATUSES))
        .order_by(Review.reviewed_at.desc(), Review.created_at.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def latest_completed_review(
    session: AsyncSession,
    project_id: str,
    pr_number: int,
) -> Review | None:
    """Most recent completed review for a pull request."""
    stmt = (
        select(Review)
        .where(Review.project_id == project_id)
        .where(Review.pr_number == pr_number)
        .where(Review.status == ReviewStatus.completed)
        .order_by(Review.reviewed_at.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_reviews(
    session: AsyncSession,
    project_id: str | None = None,
    status_filter: ReviewStatus | None = None,
) -> list[Review]:
    """List reviews, newest first, with optional filters."""
    stmt = select(Review)

    if project_id is not None:
        stmt = stmt.where(Review.project_id == project_id)

    if status_filter is not None:
        stmt = stmt.where(Review.status == status_filter)

    stmt = stmt.order_by(Review.created_at.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def review_stats(session: AsyncSession) -> dict[str, tuple[int, datetime | None]]:
    """Per-project review count and latest reviewed_at."""
    stmt = select(
        Review.project_id,
        func.count(Review.id),
        func.max(Review.reviewed_at),
    ).group_by(Review.project_id)
    result = await session.execute(stmt)
    return {row[0]: (row[1], row[2]) for row in result.all()}


async def finish_review(
    session: AsyncSession,
    review_id: str,
    status: ReviewStatus,
    review_dir: str | None = None,
    verdict: ReviewVerdict | None = None,
    comment_count: int | None = None,
    review_output: str | None = None,
    error_message: str | None = None,
) -> Review:
    """Move a review out of the pending state and close its session.

    Completed and partial reviews get reviewed_at set to the claim time,
    so changes pushed while the agent ran still count as unreviewed. Their
    session is marked completed. Failed reviews mark the session as error.

    Raises:
        ValueError: If review not found.
    """
    review = await get_review(session, review_id)
    if review is None:
        raise ValueError(f"Review {review_id} not found")

    now = utcnow()
    review.status = status
    if status in FINISHED_STATUSES:
        review.reviewed_at = review.created_at
    if review_dir is not None:
        review.review_dir = review_dir
    if verdict is not None:
        review.verdict = verdict
    if comment_count is not None:
        review.comment_count = comment_count
    if review_output is not None:
        review.review_output = review_output
    if error_message is not None:
        review.error_message = error_message

    if review.session_id is not None:
        agent_session = await session.get(ReviewSession, review.session_id)
        if agent_session is not None:
            agent_session.status = (
                SessionStatus.error if status == ReviewStatus.failed else SessionStatus.completed
            )
            agent_session.completed_at = now
            if error_message is not None:
                agent_session.error_message = error_message

    await session.commit()
    await session.refresh(review)

    logger.info(
        "review_finished",
        review_id=review_id,
        status=status.value,
        verdict=review.verdict.value,
        comment_count=review.comment_count,
    )
    return review


async def update_review(
    session: AsyncSession,
    review_id: str,
    **updates: Any,
) -> Review:
    """Set arbitrary columns on a review.

    Raises:
        ValueError: If review not found.
    """
    review = await get_review(session, review_id)
    if review is None:
        raise ValueError(f"Review {review_id} not found")

    for field_name, value in updates.items():
        setattr(review, field_name, value)

    await session.commit()
    await session.refresh(review)
    return review


async def list_stale_claims(
    session: AsyncSession,
    older_than: datetime,
    project_id: str | None = None,
) -> list[Review]:
    """Pending reviews created before the given instant."""
    stmt = (
        select(Review)
        .where(Review.status == ReviewStatus.pending)
        .where(Review.created_at < older_than)
    )
    if project_id is not None:
        stmt = stmt.where(Review.project_id == project_id)
    result = await session.execute(stmt)
    return list(result.scalars().all())
