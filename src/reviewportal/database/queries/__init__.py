"""Database query functions for Review Portal.

This module provides async query functions for all database entities:
- Project CRUD and upsert-by-remote
- Review claims, completion and lookups
- Session lifecycle
- Guideline document versions
- Global settings
"""

from reviewportal.database.queries.document import add_version, latest_version, list_versions
from reviewportal.database.queries.project import (
    delete_project,
    get_project,
    list_pollable_projects,
    list_projects,
    mark_polled,
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
    list_reviews,
    list_stale_claims,
    review_stats,
    update_review,
)
from reviewportal.database.queries.session import (
    create_session,
    end_session,
    get_session,
    list_sessions,
    set_agent_session_id,
)
from reviewportal.database.queries.settings import get_setting, set_setting

__all__ = [
    # Project queries
    "upsert_project",
    "get_project",
    "list_projects",
    "list_pollable_projects",
    "update_project",
    "mark_polled",
    "delete_project",
    # Review queries
    "claim_review",
    "get_review",
    "get_pending_claim",
    "latest_finished_review",
    "latest_completed_review",
    "list_reviews",
    "review_stats",
    "finish_review",
    "update_review",
    "list_stale_claims",
    # Session queries
    "create_session",
    "get_session",
    "list_sessions",
    "end_session",
    "set_agent_session_id",
    # Document queries
    "add_version",
    "latest_version",
    "list_versions",
    # Settings queries
    "get_setting",
    "set_setting",
]
