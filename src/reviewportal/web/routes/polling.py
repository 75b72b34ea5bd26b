"""Poller lifecycle endpoints.

Routes:
    GET  /api/polling/status  - Poller state
    POST /api/polling/start   - Start interval polling
    POST /api/polling/stop    - Stop interval polling
    POST /api/polling/trigger - Run one poll cycle now
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status
from pydantic import BaseModel

from reviewportal.errors import ConfigurationError
from reviewportal.logging import get_logger
from reviewportal.orchestrator.services import PortalServices
from reviewportal.web.dependencies import get_services

logger = get_logger(__name__)


class PollerStatusResponse(BaseModel):
    """Poller state.

    Attributes:
        running: Whether interval polling is active
        last_poll_time: End of the most recent cycle
        last_error: Last per-project failure of the most recent cycle
        polling_interval_seconds: Seconds between cycles
        github_token_configured: Whether polling can be started
    """

    running: bool
    last_poll_time: datetime | None
    last_error: str | None
    polling_interval_seconds: int
    github_token_configured: bool


class PollerControlResponse(BaseModel):
    message: str
    running: bool


class PollTriggerResponse(BaseModel):
    message: str
    projects_checked: int
    reviews_triggered: int


def create_polling_router() -> APIRouter:
    """Create the poller control router."""
    router = APIRouter(prefix="/api/polling", tags=["polling"])

    @router.get("/status", response_model=PollerStatusResponse)
    async def polling_status(
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> PollerStatusResponse:
        return PollerStatusResponse.model_validate(services.poller.status())

    @router.post("/start", response_model=PollerControlResponse)
    async def start_polling(
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> PollerControlResponse:
        try:
            await services.poller.start()
        except ConfigurationError as e:
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail=str(e),
            ) from e
        return PollerControlResponse(message="Poller started", running=True)

    @router.post("/stop", response_model=PollerControlResponse)
    async def stop_polling(
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> PollerControlResponse:
        await services.poller.stop()
        return PollerControlResponse(message="Poller stopped", running=False)

    @router.post("/trigger", response_model=PollTriggerResponse)
    async def trigger_poll(
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> PollTriggerResponse:
        """Run one cycle and wait for it, whether or not the poller is running."""
        if not services.github.is_configured:
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail="GitHub token is required for polling mode",
            )
        result = await services.poller.poll_once()
        return PollTriggerResponse(
            message="Poll cycle completed",
            projects_checked=result.projects_checked,
            reviews_triggered=result.reviews_triggered,
        )

    return router
