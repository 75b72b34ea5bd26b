"""Project CRUD query functions for Review Portal.

Provides async functions for creating, reading, updating, and deleting
Project records using SQLAlchemy 2.0 select() API.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from reviewportal.database.models.base import utcnow
from reviewportal.database.models.project import Project

logger = structlog.get_logger(__name__)


async def upsert_project(
    session: AsyncSession,
    project_id: str,
    display_name: str,
    git_remote: str,
    store_path: str,
) -> Project:
    """Insert a project or refresh its store-derived fields.

    The display name and settings such as the trigger label or polling
    flag are left untouched on existing rows.

    Args:
        session: Active async database session.
        project_id: Identifier derived from the git remote.
        display_name: Human-readable project name.
        git_remote: Remote URL used for cloning.
        store_path: Directory holding the project's guideline documents.

    Returns:
        The inserted or updated Project instance.
    """
    project = await get_project(session, project_id)
    created = project is None

    if project is None:
        project = Project(
            id=project_id,
            display_name=display_name,
            git_remote=git_remote,
            store_path=store_path,
        )
        session.add(project)
    else:
        project.git_remote = git_remote
        project.store_path = store_path

    await session.commit()
    await session.refresh(project)

    logger.info("project_upserted", project_id=project_id, created=created)
    return project


async def get_project(
    session: AsyncSession,
    project_id: str,
) -> Project | None:
    """Retrieve a project by ID.

    Args:
        session: Active async database session.
        project_id: Identifier of the project to retrieve.

    Returns:
        The Project instance if found, None otherwise.
    """
    stmt = select(Project).where(Project.id == project_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_projects(session: AsyncSession) -> list[Project]:
    """List all projects ordered by display name."""
    stmt = select(Project).order_by(Project.display_name)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_pollable_projects(session: AsyncSession) -> list[Project]:
    """List projects with both auto-review and polling enabled."""
    stmt = (
        select(Project)
        .where(Project.auto_review_enabled.is_(True))
        .where(Project.polling_enabled.is_(True))
        .order_by(Project.display_name)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def update_project(
    session: AsyncSession,
    project_id: str,
    **updates: Any,
) -> Project:
    """Update a project's fields.

    Args:
        session: Active async database session.
        project_id: Identifier of the project to update.
        **updates: Column names and values to set.

    Returns:
        The updated Project instance.

    Raises:
        ValueError: If project not found.
    """
    project = await get_project(session, project_id)
    if project is None:
        raise ValueError(f"Project {project_id} not found")

    for field_name, value in updates.items():
        setattr(project, field_name, value)

    await session.commit()
    await session.refresh(project)

    logger.info(
        "project_updated",
        project_id=project_id,
        fields_updated=list(updates.keys()),
    )
    return project


async def mark_polled(
    session: AsyncSession,
    project_id: str,
    polled_at: datetime | None = None,
) -> None:
    """Stamp a project's last_polled_at."""
    project = await get_project(session, project_id)
    if project is None:
        return
    project.last_polled_at = polled_at or utcnow()
    await session.commit()


async def delete_project(
    session: AsyncSession,
    project_id: str,
) -> bool:
    """Delete a project.

    Args:
        session: Active async database session.
        project_id: Identifier of the project to delete.

    Returns:
        True if the project was deleted, False if not found.
    """
    stmt = delete(Project).where(Project.id == project_id)
    result = await session.execute(stmt)
    await session.commit()

    deleted = result.rowcount > 0
    if deleted:
        logger.info("project_deleted", project_id=project_id)
    else:
        logger.warning("project_not_found", project_id=project_id)
    return deleted
