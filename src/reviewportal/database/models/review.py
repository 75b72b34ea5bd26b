"""Review model for Review Portal.

Defines the Review table plus the ReviewVerdict and ReviewStatus enums.
A review row is inserted as a ``pending`` claim before any work starts on
a pull request and is finalised once the agent run ends.
"""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from reviewportal.database.models.base import Base, TimestampMixin


class ReviewVerdict(enum.Enum):
    """Overall verdict produced by the review agent."""

    approve = "approve"
    request_changes = "request_changes"
    comment = "comment"


class ReviewStatus(enum.Enum):
    """Lifecycle of one review attempt.

    States:
        pending: Claim inserted, clone or agent run in progress.
        completed: Agent ran and its output was saved.
        partial: Agent ran but its output could not be read.
        failed: Clone or agent run failed, or the claim was abandoned.
    """

    pending = "pending"
    completed = "completed"
    partial = "partial"
    failed = "failed"


class Review(TimestampMixin, Base):
    """One review attempt for a pull request.

    Attributes:
        id: "<project_id>-pr-<number>-<millis>-<suffix>".
        project_id: Owning project.
        pr_number: Pull request number.
        pr_title: Pull request title at trigger time.
        pr_url: Pull request HTML URL.
        repository: "owner/repo".
        reviewed_at: Claim time of a finished attempt, None until it finishes.
        verdict: Agent verdict.
        comment_count: Number of inline comments in the output.
        review_dir: Archive directory under the review store, or
                    "pending-<session_id>" while the claim is open.
        review_output: Raw review artifact JSON.
        github_review_id: Id assigned by GitHub once published.
        status: Attempt status.
        session_id: Session tracking the agent invocation.
        error_message: Failure description for failed attempts.
    """

    __tablename__ = "reviews"
    __table_args__ = (
        Index("idx_reviews_project_pr", "project_id", "pr_number"),
        Index(
            "uq_reviews_pending_claim",
            "project_id",
            "pr_number",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
    )

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    pr_number: Mapped[int] = mapped_column(Integer, nullable=False)
    pr_title: Mapped[str] = mapped_column(Text, nullable=False, default="")
    pr_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    repository: Mapped[str] = mapped_column(Text, nullable=False)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    verdict: Mapped[ReviewVerdict] = mapped_column(
        default=ReviewVerdict.comment,
        nullable=False,
    )
    comment_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    review_dir: Mapped[str] = mapped_column(Text, nullable=False)
    review_output: Mapped[str | None] = mapped_column(Text, nullable=True)
    github_review_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    status: Mapped[ReviewStatus] = mapped_column(
        default=ReviewStatus.pending,
        nullable=False,
    )
    session_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
