"""Text-to-audio conversion pipeline.

Order of operations: cache lookup, quota gate, file record in
``processing``, vendor synthesis, upload, ``completed``, usage row.
A cache hit records no usage. Failures after the file record exists leave
it in ``error`` with the message.
"""

from __future__ import annotations

import hashlib
import os
import uuid
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.config import SheetSpeakSettings, get_settings
from sheetspeak.db.models.core import StoredFile, User, UserTtsSettings
from sheetspeak.logging import logger
from sheetspeak.services.analytics import AnalyticsClient
from sheetspeak.services.exceptions import InvalidRequest, QuotaExceeded, ServiceError
from sheetspeak.services.quota import QuotaDecision, QuotaGate
from sheetspeak.services.storage import ObjectStorage
from sheetspeak.services.tts.base import ProviderCredentials, SynthesisRequest
from sheetspeak.services.tts.polly import PollyProvider
from sheetspeak.services.tts.registry import ProviderRegistry
from sheetspeak.services.usage import UsageRecorder


def content_hash(text: str, voice_id: str | None) -> str:
    return hashlib.sha256(f"{text}{voice_id or ''}".encode("utf-8")).hexdigest()


def audio_filename(original: str | None, file_key: str) -> str:
    if original:
        stem = os.path.splitext(os.path.basename(original))[0] or "audio"
        return f"{stem}_audio.mp3"
    return f"tts_{file_key[:8]}.mp3"


@dataclass(slots=True)
class ConversionRequest:
    text: str
    provider: str
    voice_id: str | None = None
    original_filename: str | None = None
    source_file_id: int | None = None
    options: dict[str, Any] = field(default_factory=dict)
    credentials: ProviderCredentials | None = None


@dataclass(slots=True)
class ConversionOutcome:
    file: StoredFile
    cached: bool
    quota: QuotaDecision | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "fileId": self.file.file_key,
            "status": self.file.conversion_status,
            "cached": self.cached,
            "audioPath": self.file.audio_file_path,
            "characters": self.file.character_count,
            "voiceId": self.file.voice_id,
            "provider": self.file.provider,
            "quota": self.quota.as_dict() if self.quota else None,
        }


class ConversionService:
    def __init__(
        self,
        session: AsyncSession,
        registry: ProviderRegistry,
        storage: ObjectStorage,
        settings: SheetSpeakSettings | None = None,
        *,
        quota_gate: QuotaGate | None = None,
        recorder: UsageRecorder | None = None,
        analytics: AnalyticsClient | None = None,
    ) -> None:
        self.session = session
        self.registry = registry
        self.storage = storage
        self.settings = settings or get_settings()
        self.quota_gate = quota_gate or QuotaGate(session, self.settings)
        self.recorder = recorder or UsageRecorder(session)
        self.analytics = analytics

    async def convert(self, user: User, request: ConversionRequest) -> ConversionOutcome:
        text = request.text or ""
        if not text.strip():
            raise InvalidRequest("Text is required")

        provider = self.registry.get(request.provider)
        tts_settings = await self._load_settings(user)
        credentials = self._merge_credentials(request.credentials, tts_settings)
        voice = provider.resolve_voice(
            request.voice_id or self._settings_voice(provider.name, tts_settings)
        )
        options = {**self._settings_options(provider.name, tts_settings), **request.options}
        digest = content_hash(text, voice)
        event_props = {"service": provider.name, "voiceId": voice or "default", "textLength": len(text)}

        cached = await self._find_cached(user, provider.name, voice, digest)
        if cached is not None:
            logger.info("conversion_cache_hit", user_id=user.id, file_id=cached.file_key)
            return ConversionOutcome(file=cached, cached=True)

        if isinstance(provider, PollyProvider):
            provider.ensure_voice_allowed(voice, credentials)

        try:
            decision = await self.quota_gate.enforce(
                user,
                len(text),
                custom_credentials=bool(credentials and credentials.is_custom),
            )
        except QuotaExceeded:
            await self._capture("tts_conversion_quota_exceeded", user, event_props)
            raise

        file_key = str(uuid.uuid4())
        name = audio_filename(request.original_filename, file_key)
        audio_path = f"{user.auth_id}/audio/{file_key}/{name}"
        record = StoredFile(
            user_id=user.id,
            file_key=file_key,
            file_type="audio/mpeg",
            original_name=name,
            character_count=len(text),
            conversion_status="processing",
            provider=provider.name,
            voice_id=voice,
            content_hash=digest,
            source_file_id=request.source_file_id,
        )
        self.session.add(record)
        await self.session.flush()
        await self._capture("tts_conversion_started", user, event_props)

        try:
            result = await provider.synthesize(
                SynthesisRequest(text=text, voice_id=voice, options=options, credentials=credentials)
            )
            await self.storage.put(audio_path, result.audio, result.content_type)
        except ServiceError as exc:
            record.conversion_status = "error"
            record.conversion_error = exc.message
            # Keep the failed record even though the request errors out.
            await self.session.commit()
            logger.warning(
                "conversion_failed",
                user_id=user.id,
                file_id=file_key,
                provider=provider.name,
                error=exc.message,
            )
            await self._capture("tts_conversion_error", user, {**event_props, "error": exc.message})
            raise

        record.conversion_status = "completed"
        record.file_path = audio_path
        record.audio_file_path = audio_path
        await self.session.flush()

        await self.recorder.record(
            user,
            len(text),
            voice_id=voice,
            provider=provider.name,
            content_hash=digest,
        )
        await self._capture(
            "tts_conversion_completed",
            user,
            {**event_props, "fileId": file_key, "audioSize": len(result.audio)},
        )
        logger.info(
            "conversion_completed",
            user_id=user.id,
            file_id=file_key,
            provider=provider.name,
            characters=len(text),
        )
        return ConversionOutcome(file=record, cached=False, quota=decision)

    async def _load_settings(self, user: User) -> UserTtsSettings | None:
        stmt = select(UserTtsSettings).where(UserTtsSettings.user_id == user.id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def _find_cached(
        self, user: User, provider: str, voice: str | None, digest: str
    ) -> StoredFile | None:
        stmt = (
            select(StoredFile)
            .where(
                StoredFile.user_id == user.id,
                StoredFile.conversion_status == "completed",
                StoredFile.provider == provider,
                StoredFile.voice_id == voice,
                StoredFile.content_hash == digest,
            )
            .order_by(StoredFile.created_at.desc(), StoredFile.id.desc())
            .limit(1)
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    @staticmethod
    def _merge_credentials(
        supplied: ProviderCredentials | None, tts_settings: UserTtsSettings | None
    ) -> ProviderCredentials | None:
        supplied = supplied or ProviderCredentials()
        merged = ProviderCredentials(
            api_key=supplied.api_key or (tts_settings.api_key if tts_settings else None),
            secret_key=supplied.secret_key or (tts_settings.aws_secret_key if tts_settings else None),
            region=supplied.region or (tts_settings.aws_region if tts_settings else None),
        )
        return merged if merged.is_custom else None

    @staticmethod
    def _settings_voice(provider: str, tts_settings: UserTtsSettings | None) -> str | None:
        if tts_settings is None:
            return None
        return {
            "polly": tts_settings.aws_polly_voice,
            "elevenlabs": tts_settings.elevenlabs_voice_id,
            "neuphonic": tts_settings.neuphonic_voice_id,
        }.get(provider)

    @staticmethod
    def _settings_options(provider: str, tts_settings: UserTtsSettings | None) -> dict[str, Any]:
        if tts_settings is None:
            return {}
        if provider == "elevenlabs":
            options = {
                "stability": tts_settings.elevenlabs_stability,
                "similarity_boost": tts_settings.elevenlabs_similarity_boost,
            }
        elif provider == "neuphonic":
            options = {
                "lang_code": tts_settings.neuphonic_lang_code,
                "model": tts_settings.neuphonic_model,
            }
        else:
            options = {}
        return {key: value for key, value in options.items() if value is not None}

    async def _capture(self, event: str, user: User, properties: dict[str, Any]) -> None:
        if self.analytics is not None:
            await self.analytics.capture(event, user, properties)


__all__ = [
    "ConversionOutcome",
    "ConversionRequest",
    "ConversionService",
    "audio_filename",
    "content_hash",
]
