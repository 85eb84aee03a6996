"""Lookup of TTS adapters by provider name."""

from __future__ import annotations

from typing import Mapping

import httpx

from sheetspeak.config import SheetSpeakSettings
from sheetspeak.services.exceptions import InvalidRequest
from sheetspeak.services.tts.base import TtsProvider
from sheetspeak.services.tts.elevenlabs import ElevenLabsProvider
from sheetspeak.services.tts.neuphonic import NeuphonicProvider
from sheetspeak.services.tts.polly import PollyProvider

# Accepts the display names stored in user settings ("Amazon", "ElevenLabs").
PROVIDER_ALIASES = {
    "polly": "polly",
    "amazon": "polly",
    "aws": "polly",
    "elevenlabs": "elevenlabs",
    "eleven_labs": "elevenlabs",
    "neuphonic": "neuphonic",
}


def normalize_provider(name: str | None) -> str:
    key = (name or "").strip().lower()
    try:
        return PROVIDER_ALIASES[key]
    except KeyError:
        raise InvalidRequest(f"Unsupported TTS provider: {name}") from None


class ProviderRegistry:
    def __init__(self, providers: Mapping[str, TtsProvider]) -> None:
        self._providers = dict(providers)

    @classmethod
    def from_settings(
        cls, settings: SheetSpeakSettings, http_client: httpx.AsyncClient
    ) -> "ProviderRegistry":
        return cls(
            {
                "polly": PollyProvider(settings.aws),
                "elevenlabs": ElevenLabsProvider(http_client, settings.elevenlabs),
                "neuphonic": NeuphonicProvider(http_client, settings.neuphonic),
            }
        )

    def get(self, name: str | None) -> TtsProvider:
        key = normalize_provider(name)
        provider = self._providers.get(key)
        if provider is None:
            raise InvalidRequest(f"TTS provider is not enabled: {key}")
        return provider

    @property
    def names(self) -> list[str]:
        return sorted(self._providers)


__all__ = ["PROVIDER_ALIASES", "ProviderRegistry", "normalize_provider"]
