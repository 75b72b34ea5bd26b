"""Review session model for Review Portal.

A session correlates one agent invocation with a project and a coarse
lifecycle status. Nothing consumes it beyond status polling.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Text
from sqlalchemy.orm import Mapped, mapped_column

from reviewportal.database.models.base import Base, utcnow


class SessionStatus(enum.Enum):
    """Session lifecycle: running -> completed | error."""

    running = "running"
    completed = "completed"
    error = "error"


class SessionType(enum.Enum):
    """What the agent invocation was for."""

    init = "init"
    review = "review"
    push = "push"


class ReviewSession(Base):
    """A tracked agent invocation.

    Attributes:
        id: "<mode>-<millis>-<suffix>", e.g. "cli-1700000000000-ab12cd34".
        project_id: Project the invocation ran against (nulled on delete).
        type: Invocation kind.
        status: Current lifecycle status.
        agent_session_id: Session id on the agent server (server mode only).
        progress: Last progress note reported by the agent server.
        error_message: Failure description when status is error.
        started_at: Creation time.
        completed_at: Time a terminal status was recorded.
    """

    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    project_id: Mapped[str | None] = mapped_column(
        ForeignKey("projects.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    type: Mapped[SessionType] = mapped_column(default=SessionType.review, nullable=False)
    status: Mapped[SessionStatus] = mapped_column(default=SessionStatus.running, nullable=False)
    agent_session_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    progress: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
