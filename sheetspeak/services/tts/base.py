"""Shared types for text-to-speech vendor adapters."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Protocol, TypeVar

import httpx

from sheetspeak.config import read_secret
from sheetspeak.logging import logger
from sheetspeak.services.exceptions import ProviderError
from sheetspeak.utils.retry import retry_async

T = TypeVar("T")


@dataclass(slots=True)
class ProviderCredentials:
    """Credentials supplied by the user instead of the service account."""

    api_key: str | None = None
    secret_key: str | None = None
    region: str | None = None

    @property
    def is_custom(self) -> bool:
        return bool(self.api_key and self.api_key.strip())


@dataclass(slots=True)
class SynthesisRequest:
    text: str
    voice_id: str | None = None
    options: dict[str, Any] = field(default_factory=dict)
    credentials: ProviderCredentials | None = None

    @property
    def characters(self) -> int:
        return len(self.text)


@dataclass(slots=True)
class SynthesisResult:
    audio: bytes
    voice_id: str | None
    provider: str
    characters: int
    content_type: str = "audio/mpeg"
    extension: str = "mp3"


class TtsProvider(Protocol):
    name: str

    def resolve_voice(self, voice_id: str | None) -> str | None: ...

    async def synthesize(self, request: SynthesisRequest) -> SynthesisResult: ...


class _BaseHttpProvider:
    """Common plumbing for vendors reached over plain HTTPS."""

    name = "http"

    def __init__(self, http_client: httpx.AsyncClient, settings) -> None:
        self._client = http_client
        self._settings = settings

    def _api_key(self, credentials: ProviderCredentials | None) -> str:
        if credentials is not None and credentials.is_custom:
            return credentials.api_key.strip()
        api_key = read_secret(self._settings.api_key)
        if not api_key:
            raise ProviderError(f"{self.name} API key is not configured.")
        return api_key

    async def _retry_http(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await retry_async(
            operation,
            max_attempts=3,
            base_delay=0.5,
            retry_on=(httpx.TransportError,),
            logger=logger,
            operation_name=name,
        )

    def _raise_for_status(self, response: httpx.Response) -> None:
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text[:500] if exc.response is not None else str(exc)
            status_code = exc.response.status_code if exc.response is not None else "unknown"
            raise ProviderError(
                f"{self.name} request failed ({status_code}): {detail}",
                provider=self.name,
                status=status_code,
            ) from exc


__all__ = [
    "ProviderCredentials",
    "SynthesisRequest",
    "SynthesisResult",
    "TtsProvider",
]
