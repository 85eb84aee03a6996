"""Per-user TTS preferences and custom vendor credentials."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.db.models.core import User, UserTtsSettings
from sheetspeak.logging import logger
from sheetspeak.services.exceptions import InvalidRequest, NotFound
from sheetspeak.services.tts.registry import normalize_provider
from sheetspeak.utils.datetime import utc_now

EDITABLE_FIELDS = (
    "api_key",
    "aws_secret_key",
    "aws_region",
    "aws_polly_voice",
    "elevenlabs_voice_id",
    "elevenlabs_stability",
    "elevenlabs_similarity_boost",
    "neuphonic_voice_id",
    "neuphonic_lang_code",
    "neuphonic_model",
)


def serialize_settings(settings: UserTtsSettings) -> dict[str, Any]:
    # Secrets never leave the server; only their presence is reported.
    return {
        "tts_service": settings.tts_service,
        "has_api_key": settings.has_custom_credentials,
        "has_aws_secret_key": bool(settings.aws_secret_key),
        "aws_region": settings.aws_region,
        "aws_polly_voice": settings.aws_polly_voice,
        "elevenlabs_voice_id": settings.elevenlabs_voice_id,
        "elevenlabs_stability": settings.elevenlabs_stability,
        "elevenlabs_similarity_boost": settings.elevenlabs_similarity_boost,
        "neuphonic_voice_id": settings.neuphonic_voice_id,
        "neuphonic_lang_code": settings.neuphonic_lang_code,
        "neuphonic_model": settings.neuphonic_model,
    }


class TtsSettingsService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user: User) -> UserTtsSettings:
        stmt = select(UserTtsSettings).where(UserTtsSettings.user_id == user.id)
        result = await self.session.execute(stmt)
        settings = result.scalar_one_or_none()
        if settings is None:
            raise NotFound("Settings not found")
        return settings

    async def upsert(self, user: User, values: dict[str, Any]) -> UserTtsSettings:
        service = values.get("tts_service")
        if not service:
            raise InvalidRequest("TTS service is required")
        normalize_provider(service)

        stmt = select(UserTtsSettings).where(UserTtsSettings.user_id == user.id)
        result = await self.session.execute(stmt)
        settings = result.scalar_one_or_none()
        if settings is None:
            settings = UserTtsSettings(user_id=user.id)
            self.session.add(settings)

        settings.tts_service = service
        for name in EDITABLE_FIELDS:
            if name in values:
                value = values[name]
                if isinstance(value, str):
                    value = value.strip() or None
                setattr(settings, name, value)
        settings.updated_at = utc_now()
        await self.session.flush()
        logger.info(
            "tts_settings_saved",
            user_id=user.id,
            tts_service=service,
            custom_credentials=settings.has_custom_credentials,
        )
        return settings


__all__ = ["EDITABLE_FIELDS", "TtsSettingsService", "serialize_settings"]
