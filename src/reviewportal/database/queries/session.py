"""Review session query functions for Review Portal."""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reviewportal.database.models.base import utcnow
from reviewportal.database.models.session import ReviewSession, SessionStatus, SessionType

logger = structlog.get_logger(__name__)


async def create_session(
    session: AsyncSession,
    session_id: str,
    project_id: str | None,
    session_type: SessionType,
) -> ReviewSession:
    """Insert a running session.

    Args:
        session: Active async database session.
        session_id: Unique session identifier.
        project_id: Project the invocation runs against, if known.
        session_type: Invocation kind.

    Returns:
        The newly created ReviewSession instance.
    """
    review_session = ReviewSession(
        id=session_id,
        project_id=project_id,
        type=session_type,
        status=SessionStatus.running,
    )
    session.add(review_session)
    await session.commit()
    await session.refresh(review_session)

    logger.info(
        "session_created",
        session_id=session_id,
        project_id=project_id,
        type=session_type.value,
    )
    return review_session


async def get_session(
    session: AsyncSession,
    session_id: str,
) -> ReviewSession | None:
    """Retrieve a session by ID."""
    result = await session.execute(select(ReviewSession).where(ReviewSession.id == session_id))
    return result.scalar_one_or_none()


async def list_sessions(
    session: AsyncSession,
    project_id: str | None = None,
    status_filter: SessionStatus | None = None,
) -> list[ReviewSession]:
    """List sessions, newest first, with optional filters."""
    stmt = select(ReviewSession)

    if project_id is not None:
        stmt = stmt.where(ReviewSession.project_id == project_id)

    if status_filter is not None:
        stmt = stmt.where(ReviewSession.status == status_filter)

    stmt = stmt.order_by(ReviewSession.started_at.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def end_session(
    session: AsyncSession,
    session_id: str,
    status: SessionStatus,
    error_message: str | None = None,
    progress: str | None = None,
) -> ReviewSession | None:
    """Record a terminal status for a session.

    Args:
        session: Active async database session.
        session_id: Session to update.
        status: Terminal status (completed or error).
        error_message: Optional failure description.
        progress: Optional final progress note.

    Returns:
        The updated session, or None if it does not exist.
    """
    review_session = await get_session(session, session_id)
    if review_session is None:
        logger.warning("session_not_found", session_id=session_id)
        return None

    review_session.status = status
    review_session.completed_at = utcnow()
    if error_message is not None:
        review_session.error_message = error_message
    if progress is not None:
        review_session.progress = progress

    await session.commit()
    await session.refresh(review_session)

    logger.info(
        "session_ended",
        session_id=session_id,
        status=status.value,
        has_error=error_message is not None,
    )
    return review_session


async def set_agent_session_id(
    session: AsyncSession,
    session_id: str,
    agent_session_id: str,
) -> None:
    """Link a session to the agent server session running it."""
    review_session = await get_session(session, session_id)
    if review_session is None:
        logger.warning("session_not_found", session_id=session_id)
        return
    review_session.agent_session_id = agent_session_id
    await session.commit()
