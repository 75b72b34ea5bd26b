"""Project model for Review Portal.

A project is one tracked git repository. Its primary key is derived from
the git remote URL, so syncing the same remote repeatedly upserts a single
row.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from reviewportal.config import DEFAULT_REVIEW_MODEL, DEFAULT_TRIGGER_LABEL
from reviewportal.database.models.base import Base, TimestampMixin

DEFAULT_EXCLUDED_PATHS = ["node_modules/", "dist/", ".git/"]
SEVERITY_THRESHOLDS = ("HIGH", "MEDIUM", "LOW")


class Project(TimestampMixin, Base):
    """A git repository whose pull requests are reviewed.

    Attributes:
        id: Identifier derived from the git remote (e.g. github.com/acme/widgets).
        display_name: Human-readable project name.
        git_remote: Remote URL used for cloning.
        main_branch: Default branch name.
        auto_review_enabled: Whether labelled PRs may be reviewed automatically.
        review_trigger_label: Label that requests a review.
        post_clone_scripts: Commands to run after cloning.
        review_model: Model identifier passed to the review agent.
        excluded_paths: Paths the agent should ignore.
        max_diff_lines: Largest diff the agent should review.
        severity_threshold: Minimum comment severity (HIGH, MEDIUM, LOW).
        github_token_ref: Name of the credential used for this project.
        polling_enabled: Whether the poller checks this project.
        last_polled_at: End of the last successful poll of this project.
        store_path: Directory of the project's guideline documents.
    """

    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    git_remote: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    main_branch: Mapped[str] = mapped_column(Text, nullable=False, default="main")
    auto_review_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    review_trigger_label: Mapped[str] = mapped_column(
        Text, nullable=False, default=DEFAULT_TRIGGER_LABEL
    )
    post_clone_scripts: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    review_model: Mapped[str] = mapped_column(Text, nullable=False, default=DEFAULT_REVIEW_MODEL)
    excluded_paths: Mapped[list[Any]] = mapped_column(
        JSON, nullable=False, default=lambda: list(DEFAULT_EXCLUDED_PATHS)
    )
    max_diff_lines: Mapped[int] = mapped_column(Integer, nullable=False, default=5000)
    severity_threshold: Mapped[str] = mapped_column(Text, nullable=False, default="MEDIUM")
    github_token_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    polling_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_polled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    store_path: Mapped[str] = mapped_column(Text, nullable=False)
