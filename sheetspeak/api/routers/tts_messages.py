"""Speech message history: list, link to generated audio, delete."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.api.deps import get_analytics, get_current_user, get_session, get_storage
from sheetspeak.db.models.core import User
from sheetspeak.domain.models import SpeechMessageRequest
from sheetspeak.services.analytics import AnalyticsClient
from sheetspeak.services.exceptions import InvalidRequest
from sheetspeak.services.speech_messages import SpeechMessageService
from sheetspeak.services.storage import ObjectStorage

router = APIRouter(prefix="/api/tts-messages", tags=["tts-messages"])


def get_messages(
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_storage),
    analytics: AnalyticsClient = Depends(get_analytics),
) -> SpeechMessageService:
    return SpeechMessageService(session, storage, analytics=analytics)


@router.get("")
async def list_messages(
    limit: int = Query(default=50, ge=1, le=100),
    page: int = Query(default=0, ge=0),
    user: User = Depends(get_current_user),
    messages: SpeechMessageService = Depends(get_messages),
) -> dict:
    return await messages.list_messages(user, limit=limit, page=page)


@router.post("")
async def create_message(
    body: SpeechMessageRequest,
    user: User = Depends(get_current_user),
    messages: SpeechMessageService = Depends(get_messages),
) -> dict:
    message = await messages.create(
        user,
        file_key=body.file_id,
        text=body.text,
        voice_id=body.voice_id,
        tts_service=body.tts_service,
    )
    return {"message": message}


@router.delete("")
async def delete_message(
    message_id: int | None = Query(default=None, alias="id"),
    delete_file: bool = Query(default=True, alias="deleteFile"),
    user: User = Depends(get_current_user),
    messages: SpeechMessageService = Depends(get_messages),
) -> dict:
    if message_id is None:
        raise InvalidRequest("Missing message ID")
    file_deleted = await messages.delete(user, message_id, delete_file=delete_file)
    return {"success": True, "fileDeleted": file_deleted}


__all__ = ["get_messages", "router"]
