"""Global portal settings.

Routes:
    GET   /api/settings - Current global settings
    PATCH /api/settings - Update global settings
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status
from pydantic import BaseModel, Field

from reviewportal.config import DEFAULT_REVIEW_MODEL
from reviewportal.database.queries.settings import get_setting, set_setting
from reviewportal.logging import get_logger
from reviewportal.orchestrator.services import PortalServices
from reviewportal.web.dependencies import get_services

logger = get_logger(__name__)

REVIEW_MODEL_KEY = "review_model"


class GlobalSettings(BaseModel):
    review_model: str


class GlobalSettingsUpdate(BaseModel):
    review_model: str | None = Field(default=None, min_length=1)


def create_settings_router() -> APIRouter:
    """Create the global settings router."""
    router = APIRouter(prefix="/api/settings", tags=["settings"])

    @router.get("", response_model=GlobalSettings)
    async def get_settings(
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> GlobalSettings:
        async with services.session_factory() as session:
            review_model = await get_setting(session, REVIEW_MODEL_KEY)
        return GlobalSettings(review_model=review_model or DEFAULT_REVIEW_MODEL)

    @router.patch("", response_model=GlobalSettings)
    async def update_settings(
        body: GlobalSettingsUpdate,
        services: PortalServices = Depends(get_services),  # noqa: B008
    ) -> GlobalSettings:
        if body.review_model is None:
            raise HTTPException(
                status_code=http_status.HTTP_400_BAD_REQUEST,
                detail="No fields to update",
            )
        async with services.session_factory() as session:
            await set_setting(session, REVIEW_MODEL_KEY, body.review_model)
        logger.info("global_settings_updated", review_model=body.review_model)
        return GlobalSettings(review_model=body.review_model)

    return router
