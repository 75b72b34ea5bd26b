"""Database layer for Review Portal.

Handles engine and session factory creation for the SQLite review store
and exposes the ORM models.

Public API:
    get_engine: Create an AsyncEngine for a database URL.
    get_session_factory: Create an async_sessionmaker from an engine.
    init_database: Create missing tables.
    Base: SQLAlchemy declarative base for all models.
"""

from reviewportal.database.connection import get_engine, get_session_factory, init_database
from reviewportal.database.models import (
    Base,
    DocumentVersion,
    GlobalSetting,
    Project,
    Review,
    ReviewSession,
    ReviewStatus,
    ReviewVerdict,
    SessionStatus,
    SessionType,
    TimestampMixin,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "init_database",
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
