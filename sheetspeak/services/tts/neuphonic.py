"""Neuphonic HTTP adapter."""

from __future__ import annotations

import base64
import binascii
import json

import httpx

from sheetspeak.config import NeuphonicSettings
from sheetspeak.logging import logger
from sheetspeak.services.exceptions import ProviderError
from sheetspeak.services.tts.base import SynthesisRequest, SynthesisResult, _BaseHttpProvider


def decode_event_stream(body: str) -> bytes:
    """Join the base64 audio chunks carried in ``data:`` lines of an SSE body."""

    chunks: list[bytes] = []
    for line in body.splitlines():
        line = line.strip()
        if not line.startswith("data:"):
            continue
        raw = line[len("data:"):].strip()
        if not raw:
            continue
        try:
            event = json.loads(raw)
        except json.JSONDecodeError:
            continue
        data = event.get("data") if isinstance(event, dict) else None
        audio = data.get("audio") if isinstance(data, dict) else None
        if not audio:
            continue
        try:
            chunks.append(base64.b64decode(audio))
        except (binascii.Error, ValueError) as exc:
            raise ProviderError("Malformed audio chunk from Neuphonic", provider="neuphonic") from exc
    return b"".join(chunks)


class NeuphonicProvider(_BaseHttpProvider):
    name = "neuphonic"

    def __init__(self, http_client: httpx.AsyncClient, settings: NeuphonicSettings | None = None) -> None:
        super().__init__(http_client, settings or NeuphonicSettings())

    def resolve_voice(self, voice_id: str | None) -> str | None:
        return (voice_id or "").strip() or self._settings.default_voice_id

    async def synthesize(self, request: SynthesisRequest) -> SynthesisResult:
        api_key = self._api_key(request.credentials)
        options = request.options
        lang_code = options.get("lang_code") or self._settings.default_lang_code
        payload = {
            "text": request.text,
            "model": options.get("model") or self._settings.default_model,
        }
        voice = self.resolve_voice(request.voice_id)
        if voice:
            payload["voice_id"] = voice

        url = f"{str(self._settings.base_url).rstrip('/')}/sse/speak/{lang_code}"
        try:
            response = await self._client.post(
                url,
                headers={
                    "Content-Type": "application/json",
                    "X-API-KEY": api_key,
                    "Accept": "text/event-stream",
                },
                json=payload,
                timeout=self._settings.request_timeout_seconds,
            )
        except httpx.RequestError as exc:
            raise ProviderError(f"Neuphonic request failed: {exc}", provider=self.name) from exc
        self._raise_for_status(response)

        content_type = response.headers.get("content-type", "")
        if content_type.startswith("text/event-stream"):
            audio = decode_event_stream(response.text)
        else:
            audio = response.content
        if not audio:
            raise ProviderError("No audio data received from Neuphonic", provider=self.name)

        logger.info(
            "neuphonic_synthesis_completed",
            lang_code=lang_code,
            model=payload["model"],
            has_voice=bool(voice),
            bytes=len(audio),
        )
        return SynthesisResult(
            audio=audio,
            voice_id=voice,
            provider=self.name,
            characters=request.characters,
        )


__all__ = ["NeuphonicProvider", "decode_event_stream"]
