"""Vendor voice catalogues."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.api.deps import get_current_user, get_registry, get_session
from sheetspeak.db.models.core import User, UserTtsSettings
from sheetspeak.services.tts.base import ProviderCredentials
from sheetspeak.services.tts.registry import ProviderRegistry

router = APIRouter(prefix="/api/voices", tags=["voices"])


async def _stored_credentials(session: AsyncSession, user: User) -> ProviderCredentials | None:
    result = await session.execute(
        select(UserTtsSettings).where(UserTtsSettings.user_id == user.id)
    )
    settings = result.scalar_one_or_none()
    if settings is None or not settings.has_custom_credentials:
        return None
    return ProviderCredentials(
        api_key=settings.api_key,
        secret_key=settings.aws_secret_key,
        region=settings.aws_region,
    )


@router.get("/polly")
async def polly_voices(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    registry: ProviderRegistry = Depends(get_registry),
) -> dict:
    credentials = await _stored_credentials(session, user)
    voices = await registry.get("polly").list_voices(credentials)
    return {"voices": voices}


@router.get("/elevenlabs")
async def elevenlabs_voices(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    registry: ProviderRegistry = Depends(get_registry),
) -> dict:
    credentials = await _stored_credentials(session, user)
    voices = await registry.get("elevenlabs").list_voices(credentials)
    return {"voices": voices}


__all__ = ["router"]
