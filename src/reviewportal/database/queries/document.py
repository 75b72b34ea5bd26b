"""Guideline document version queries for Review Portal."""

from __future__ import annotations

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reviewportal.database.models.document import DocumentVersion

logger = structlog.get_logger(__name__)


def _module_filter(module_name: str | None):
    if module_name is None:
        return DocumentVersion.module_name.is_(None)
    return DocumentVersion.module_name == module_name


async def latest_version(
    session: AsyncSession,
    project_id: str,
    module_name: str | None,
) -> DocumentVersion | None:
    """Most recent saved revision of a document, if any."""
    stmt = (
        select(DocumentVersion)
        .where(DocumentVersion.project_id == project_id)
        .where(_module_filter(module_name))
        .order_by(DocumentVersion.version.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_versions(
    session: AsyncSession,
    project_id: str,
    module_name: str | None,
) -> list[DocumentVersion]:
    """All revisions of a document, newest first."""
    stmt = (
        select(DocumentVersion)
        .where(DocumentVersion.project_id == project_id)
        .where(_module_filter(module_name))
        .order_by(DocumentVersion.version.desc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def add_version(
    session: AsyncSession,
    project_id: str,
    module_name: str | None,
    content: str,
    modified_by: str = "user",
) -> DocumentVersion:
    """Record a new revision numbered one past the latest.

    Args:
        session: Active async database session.
        project_id: Owning project.
        module_name: Module name, None for the root document.
        content: Full document content.
        modified_by: Author tag.

    Returns:
        The inserted DocumentVersion.
    """
    previous = await latest_version(session, project_id, module_name)
    version = DocumentVersion(
        project_id=project_id,
        module_name=module_name,
        content=content,
        version=(previous.version if previous else 0) + 1,
        modified_by=modified_by,
    )
    session.add(version)
    await session.commit()
    await session.refresh(version)

    logger.info(
        "document_version_saved",
        project_id=project_id,
        module_name=module_name,
        version=version.version,
    )
    return version
