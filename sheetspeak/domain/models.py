"""Pydantic models shared by the HTTP layer."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from sheetspeak.db.models.core import StoredFile
from sheetspeak.utils.datetime import ensure_utc


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CheckLimitRequest(BaseModel):
    # Validated by the quota gate so non-numeric input yields a 400, not a 422.
    characters: Any = None


class ConvertRequest(_CamelModel):
    text: str | None = None
    provider: str | None = None
    tts_service: str | None = None
    voice_id: str | None = Field(default=None, alias="voiceId")
    original_filename: str | None = Field(default=None, alias="originalFilename")
    file_id: str | None = Field(default=None, alias="fileId")
    api_key: str | None = Field(default=None, alias="apiKey")
    secret_key: str | None = Field(default=None, alias="secretKey")
    region: str | None = None
    lang_code: str | None = Field(default=None, alias="langCode")
    model: str | None = None
    options: dict[str, Any] = Field(default_factory=dict)

    def provider_options(self) -> dict[str, Any]:
        options = dict(self.options)
        if self.lang_code:
            options["lang_code"] = self.lang_code
        if self.model:
            options["model"] = self.model
        return options


class CheckoutRequest(_CamelModel):
    tier_id: Any = Field(default=None, alias="tierId")


class SpeechMessageRequest(_CamelModel):
    file_id: str | None = Field(default=None, alias="fileId")
    text: str | None = None
    voice_id: str | None = Field(default=None, alias="voiceId")
    tts_service: str | None = Field(default=None, alias="ttsService")


class TtsSettingsPayload(BaseModel):
    tts_service: str | None = None
    api_key: str | None = None
    aws_secret_key: str | None = None
    aws_region: str | None = None
    aws_polly_voice: str | None = None
    elevenlabs_voice_id: str | None = None
    elevenlabs_stability: float | None = Field(default=None, ge=0.0, le=1.0)
    elevenlabs_similarity_boost: float | None = Field(default=None, ge=0.0, le=1.0)
    neuphonic_voice_id: str | None = None
    neuphonic_lang_code: str | None = None
    neuphonic_model: str | None = None


class FileModel(_CamelModel):
    id: str
    original_name: str = Field(serialization_alias="originalName")
    file_type: str = Field(serialization_alias="fileType")
    file_path: str | None = Field(default=None, serialization_alias="filePath")
    character_count: int = Field(serialization_alias="characterCount")
    conversion_status: str = Field(serialization_alias="conversionStatus")
    provider: str | None = None
    voice_id: str | None = Field(default=None, serialization_alias="voiceId")
    audio_file_path: str | None = Field(default=None, serialization_alias="audioFilePath")
    conversion_error: str | None = Field(default=None, serialization_alias="conversionError")
    created_at: datetime | None = Field(default=None, serialization_alias="createdAt")

    @classmethod
    def from_record(cls, record: StoredFile) -> "FileModel":
        return cls(
            id=record.file_key,
            original_name=record.original_name,
            file_type=record.file_type,
            file_path=record.file_path,
            character_count=record.character_count or 0,
            conversion_status=record.conversion_status,
            provider=record.provider,
            voice_id=record.voice_id,
            audio_file_path=record.audio_file_path,
            conversion_error=record.conversion_error,
            created_at=ensure_utc(record.created_at),
        )


class TierModel(BaseModel):
    id: int
    code: str
    name: str
    description: str | None = None
    monthly_price: int
    daily_character_limit: int | None = None
    monthly_character_limit: int | None = None
    yearly_character_limit: int | None = None

    model_config = ConfigDict(from_attributes=True)


__all__ = [
    "CheckLimitRequest",
    "CheckoutRequest",
    "ConvertRequest",
    "FileModel",
    "SpeechMessageRequest",
    "TierModel",
    "TtsSettingsPayload",
]
