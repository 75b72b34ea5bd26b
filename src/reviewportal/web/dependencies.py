"""FastAPI dependencies shared by the route modules."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import HTTPException, Request
from fastapi import status as http_status

from reviewportal.database.queries.project import get_project
from reviewportal.orchestrator.services import PortalServices

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from reviewportal.database.models.project import Project


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    """Dependency that retrieves session factory from app state.

    Args:
        request: FastAPI request object

    Returns:
        Session factory from app.state
    """
    return request.app.state.session_factory  # type: ignore[return-value]


def get_services(request: Request) -> PortalServices:
    """Dependency that retrieves the service graph from app state."""
    return request.app.state.services  # type: ignore[return-value]


async def load_project(
    session_factory: async_sessionmaker[AsyncSession],
    project_id: str,
) -> Project:
    """Fetch a project or fail the request with 404."""
    async with session_factory() as session:
        project = await get_project(session, project_id)
    if project is None:
        raise HTTPException(
            status_code=http_status.HTTP_404_NOT_FOUND,
            detail="Project not found",
        )
    return project
