"""Global key/value settings queries for Review Portal."""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from reviewportal.database.models.document import GlobalSetting

logger = structlog.get_logger(__name__)


async def get_setting(session: AsyncSession, key: str) -> str | None:
    """Return a global setting value, or None when unset."""
    setting = await session.get(GlobalSetting, key)
    return setting.value if setting is not None else None


async def set_setting(session: AsyncSession, key: str, value: str) -> None:
    """Insert or overwrite a global setting."""
    setting = await session.get(GlobalSetting, key)
    if setting is None:
        session.add(GlobalSetting(key=key, value=value))
    else:
        setting.value = value
    await session.commit()
    logger.info("global_setting_updated", key=key)
