"""Document version audit trail and global settings models."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from reviewportal.database.models.base import Base, utcnow


class DocumentVersion(Base):
    """One saved revision of a review-guideline document.

    Attributes:
        id: Autoincrement primary key.
        project_id: Owning project.
        module_name: Module the document belongs to, None for the root document.
        content: Full markdown content of this revision.
        version: Monotonic revision number per (project, module).
        modified_by: "user" for edits made through the API, "system" otherwise.
        modified_at: When the revision was saved.
    """

    __tablename__ = "document_versions"
    __table_args__ = (Index("idx_doc_versions_project_module", "project_id", "module_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
    )
    module_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    modified_by: Mapped[str] = mapped_column(Text, nullable=False, default="system")
    modified_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )


class GlobalSetting(Base):
    """Key/value setting shared by all projects."""

    __tablename__ = "global_settings"

    key: Mapped[str] = mapped_column(Text, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
