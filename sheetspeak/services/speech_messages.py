"""History of spoken texts and the audio generated for them."""

from __future__ import annotations

from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sheetspeak.db.models.core import SpeechMessage, StoredFile, User
from sheetspeak.logging import logger
from sheetspeak.services.analytics import AnalyticsClient
from sheetspeak.services.documents import remove_stored_file
from sheetspeak.services.exceptions import InvalidRequest, NotFound, StorageError
from sheetspeak.services.storage import ObjectStorage
from sheetspeak.utils.datetime import ensure_utc

DEFAULT_TTS_SERVICE = "Amazon"


class SpeechMessageService:
    def __init__(
        self,
        session: AsyncSession,
        storage: ObjectStorage,
        *,
        analytics: AnalyticsClient | None = None,
    ) -> None:
        self.session = session
        self.storage = storage
        self.analytics = analytics

    async def list_messages(self, user: User, *, limit: int = 50, page: int = 0) -> dict[str, Any]:
        """Newest first; each entry carries a signed URL for its audio when one exists."""

        count = await self.session.execute(
            select(func.count(SpeechMessage.id)).where(SpeechMessage.user_id == user.id)
        )
        stmt = (
            select(SpeechMessage)
            .options(selectinload(SpeechMessage.file))
            .where(SpeechMessage.user_id == user.id)
            .order_by(SpeechMessage.created_at.desc(), SpeechMessage.id.desc())
            .limit(limit)
            .offset(page * limit)
        )
        result = await self.session.execute(stmt)
        messages = [await self.serialize(message) for message in result.scalars()]
        await self._capture(
            "tts_messages_fetched",
            user,
            {"messageCount": len(messages), "page": page, "limit": limit},
        )
        return {
            "messages": messages,
            "count": int(count.scalar_one() or 0),
            "page": page,
            "limit": limit,
        }

    async def create(
        self,
        user: User,
        *,
        file_key: str | None,
        text: str | None,
        voice_id: str | None = None,
        tts_service: str | None = None,
    ) -> dict[str, Any]:
        if not text or not file_key:
            raise InvalidRequest("Missing required fields")

        record = await self._owned_file(user, file_key)
        message = SpeechMessage(
            user_id=user.id,
            file_id=record.id,
            text=text,
            voice_id=voice_id,
            tts_service=tts_service or DEFAULT_TTS_SERVICE,
            characters=len(text),
        )
        message.file = record
        self.session.add(message)
        await self.session.flush()
        logger.info(
            "speech_message_created",
            user_id=user.id,
            message_id=message.id,
            file_id=file_key,
            characters=message.characters,
        )
        await self._capture(
            "tts_message_created",
            user,
            {
                "messageId": message.id,
                "textLength": message.characters,
                "voiceId": voice_id,
                "ttsService": message.tts_service,
            },
        )
        return await self.serialize(message)

    async def delete(self, user: User, message_id: int, *, delete_file: bool = True) -> bool:
        """Remove the message and, unless told otherwise, its linked file. Returns whether a file went too."""

        stmt = (
            select(SpeechMessage)
            .options(selectinload(SpeechMessage.file))
            .where(SpeechMessage.id == message_id, SpeechMessage.user_id == user.id)
        )
        message = (await self.session.execute(stmt)).scalar_one_or_none()
        if message is None:
            raise NotFound("Message not found")

        linked = message.file
        await self.session.delete(message)
        await self.session.flush()

        file_deleted = False
        if delete_file and linked is not None:
            await remove_stored_file(self.session, self.storage, linked)
            file_deleted = True

        logger.info(
            "speech_message_deleted",
            user_id=user.id,
            message_id=message_id,
            file_deleted=file_deleted,
        )
        await self._capture(
            "tts_message_deleted", user, {"messageId": message_id, "fileDeleted": file_deleted}
        )
        return file_deleted

    async def serialize(self, message: SpeechMessage) -> dict[str, Any]:
        record = message.file
        audio_key = (record.audio_file_path or record.file_path) if record else None
        created_at = ensure_utc(message.created_at)
        return {
            "id": message.id,
            "text": message.text,
            "voiceId": message.voice_id,
            "ttsService": message.tts_service,
            "characters": message.characters,
            "fileId": record.file_key if record else None,
            "createdAt": created_at.isoformat() if created_at else None,
            "audioUrl": await self._signed_url(audio_key),
        }

    async def _signed_url(self, key: str | None) -> str | None:
        if not key:
            return None
        try:
            return await self.storage.presigned_url(key)
        except StorageError as exc:
            # The history still renders; only the play link is missing.
            logger.warning("speech_message_url_failed", key=key, error=exc.message)
            return None

    async def _owned_file(self, user: User, file_key: str) -> StoredFile:
        stmt = select(StoredFile).where(
            StoredFile.file_key == file_key,
            StoredFile.user_id == user.id,
        )
        record = (await self.session.execute(stmt)).scalar_one_or_none()
        if record is None:
            raise NotFound("File not found or access denied")
        return record

    async def _capture(self, event: str, user: User, properties: dict[str, Any]) -> None:
        if self.analytics is not None:
            await self.analytics.capture(event, user, properties)


__all__ = ["DEFAULT_TTS_SERVICE", "SpeechMessageService"]
