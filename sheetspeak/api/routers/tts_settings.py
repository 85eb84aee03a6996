from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.api.deps import get_current_user, get_session
from sheetspeak.db.models.core import User
from sheetspeak.domain.models import TtsSettingsPayload
from sheetspeak.services.tts_settings import TtsSettingsService, serialize_settings

router = APIRouter(prefix="/api/tts-settings", tags=["tts-settings"])


@router.get("")
async def read_settings(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    settings = await TtsSettingsService(session).get(user)
    return serialize_settings(settings)


@router.post("")
async def save_settings(
    body: TtsSettingsPayload,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    settings = await TtsSettingsService(session).upsert(user, body.model_dump(exclude_unset=True))
    return {"success": True, "settings": serialize_settings(settings)}


__all__ = ["router"]
