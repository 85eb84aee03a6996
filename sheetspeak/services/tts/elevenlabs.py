"""ElevenLabs REST adapter."""

from __future__ import annotations

import httpx

from sheetspeak.config import ElevenLabsSettings
from sheetspeak.logging import logger
from sheetspeak.services.exceptions import ProviderError
from sheetspeak.services.tts.base import (
    ProviderCredentials,
    SynthesisRequest,
    SynthesisResult,
    _BaseHttpProvider,
)


class ElevenLabsProvider(_BaseHttpProvider):
    name = "elevenlabs"

    def __init__(self, http_client: httpx.AsyncClient, settings: ElevenLabsSettings | None = None) -> None:
        super().__init__(http_client, settings or ElevenLabsSettings())

    def resolve_voice(self, voice_id: str | None) -> str:
        return (voice_id or "").strip() or self._settings.default_voice_id

    def _url(self, path: str) -> str:
        return f"{str(self._settings.base_url).rstrip('/')}{path}"

    async def synthesize(self, request: SynthesisRequest) -> SynthesisResult:
        api_key = self._api_key(request.credentials)
        voice = self.resolve_voice(request.voice_id)
        options = request.options
        payload = {
            "text": request.text,
            "model_id": options.get("model_id") or self._settings.model_id,
            "voice_settings": {
                "stability": options.get("stability", self._settings.stability),
                "similarity_boost": options.get(
                    "similarity_boost", self._settings.similarity_boost
                ),
            },
        }
        try:
            response = await self._client.post(
                self._url(f"/v1/text-to-speech/{voice}"),
                headers={
                    "xi-api-key": api_key,
                    "Accept": "audio/mpeg",
                    "Content-Type": "application/json",
                },
                json=payload,
                timeout=self._settings.request_timeout_seconds,
            )
        except httpx.RequestError as exc:
            raise ProviderError(f"ElevenLabs request failed: {exc}", provider=self.name) from exc
        self._raise_for_status(response)

        audio = response.content
        if not audio:
            raise ProviderError("No audio data received from ElevenLabs", provider=self.name)
        logger.info(
            "elevenlabs_synthesis_completed",
            voice_id=voice,
            characters=request.characters,
            bytes=len(audio),
        )
        return SynthesisResult(
            audio=audio,
            voice_id=voice,
            provider=self.name,
            characters=request.characters,
        )

    async def list_voices(self, credentials: ProviderCredentials | None = None) -> list[dict]:
        api_key = self._api_key(credentials)

        async def _request():
            response = await self._client.get(
                self._url("/v1/voices"),
                headers={"Accept": "application/json", "xi-api-key": api_key},
                timeout=self._settings.request_timeout_seconds,
            )
            response.raise_for_status()
            return response

        try:
            response = await self._retry_http("elevenlabs_voices", _request)
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text[:500] if exc.response is not None else str(exc)
            raise ProviderError(f"ElevenLabs API error: {detail}", provider=self.name) from exc
        except httpx.RequestError as exc:
            raise ProviderError(f"ElevenLabs request failed: {exc}", provider=self.name) from exc

        data = response.json()
        return list(data.get("voices") or [])


__all__ = ["ElevenLabsProvider"]
