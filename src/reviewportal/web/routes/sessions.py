"""Agent session status endpoint.

Routes:
    GET /api/sessions/{session_id}/status - Stored or live session status
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status
from pydantic import BaseModel, ConfigDict

from reviewportal.agents.runner import ServerAgentRunner
from reviewportal.database.models.session import SessionStatus, SessionType
from reviewportal.database.queries.session import end_session, get_session
from reviewportal.logging import get_logger
from reviewportal.orchestrator.services import PortalServices
from reviewportal.web.dependencies import get_services

logger = get_logger(__name__)


class SessionStatusResponse(BaseModel):
    """Status of one agent invocation.

    Attributes:
        id: Portal session id
        project_id: Project the invocation ran against
        type: init, review or push
        status: running, completed or error
        agent_session_id: Session id on the agent server, if any
        progress: Last progress note
        error_message: Failure description
        started_at: Start time
        completed_at: End time for terminal sessions
    """

    model_config = ConfigDict(from_attributes=True)

    id: str
    project_id: str | None
    type: SessionType
    status: SessionStatus
    agent_session_id: str | None
    progress: str | None
    error_message: str | None
    started_at: datetime
    completed_at: datetime | None


def create_sessions_router() -> APIRouter:
    """Create the sessions router."""
    router = APIRouter(prefix="/api/sessions", tags=["sessions"])

    @router.get("/{session_id}/status", response_model=SessionStatusResponse)
    async def session_status(
        session_id: str,
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> SessionStatusResponse:
        """Report a session's status.

        A running session backed by the agent server is checked live; a
        terminal answer is written back so later calls use the stored row.
        """
        async with services.session_factory() as session:
            row = await get_session(session, session_id)
            if row is None:
                raise HTTPException(
                    status_code=http_status.HTTP_404_NOT_FOUND,
                    detail="Session not found",
                )

            runner = services.runner
            if (
                row.status == SessionStatus.running
                and row.agent_session_id
                and isinstance(runner, ServerAgentRunner)
            ):
                live = await runner.client.session_status(row.agent_session_id)
                if live["status"] == "running":
                    response = SessionStatusResponse.model_validate(row)
                    response.progress = live.get("progress")
                    return response

                status = (
                    SessionStatus.completed
                    if live["status"] == "completed"
                    else SessionStatus.error
                )
                row = await end_session(
                    session,
                    session_id,
                    status,
                    error_message=live.get("progress") if status == SessionStatus.error else None,
                    progress=live.get("progress"),
                )
                logger.info(
                    "session_status_persisted",
                    session_id=session_id,
                    status=status.value,
                )

        return SessionStatusResponse.model_validate(row)

    return router
