"""SQLAlchemy ORM models for Review Portal.

Projects, review attempts, agent sessions, guideline document versions and
global settings. All models use SQLAlchemy 2.0 declarative style with
Mapped[] type annotations.
"""

from reviewportal.database.models.base import Base, TimestampMixin
from reviewportal.database.models.document import DocumentVersion, GlobalSetting
from reviewportal.database.models.project import Project
from reviewportal.database.models.review import Review, ReviewStatus, ReviewVerdict
from reviewportal.database.models.session import ReviewSession, SessionStatus, SessionType

__all__ = [
    "Base",
    "TimestampMixin",
    "Project",
    "Review",
    "ReviewStatus",
    "ReviewVerdict",
    "ReviewSession",
    "SessionStatus",
    "SessionType",
    "DocumentVersion",
    "GlobalSetting",
]
