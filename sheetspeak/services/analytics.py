"""Best-effort server-side product analytics (PostHog capture API)."""

from __future__ import annotations

from typing import Any

import httpx

from sheetspeak.config import AnalyticsSettings, read_secret
from sheetspeak.db.models.core import User
from sheetspeak.logging import logger


class AnalyticsClient:
    def __init__(self, http_client: httpx.AsyncClient | None, settings: AnalyticsSettings) -> None:
        self._client = http_client
        self._settings = settings

    @property
    def enabled(self) -> bool:
        return self._client is not None and bool(read_secret(self._settings.posthog_key))

    async def capture(
        self,
        event: str,
        user: User | None,
        properties: dict[str, Any] | None = None,
    ) -> bool:
        """Send one event; returns False when skipped or failed. Never raises."""

        if user is None or not self.enabled:
            return False

        payload = {
            "api_key": read_secret(self._settings.posthog_key),
            "distinct_id": user.auth_id,
            "event": event,
            "properties": {**(properties or {}), "source": "server"},
        }
        url = f"{str(self._settings.posthog_host).rstrip('/')}/capture/"
        try:
            response = await self._client.post(
                url, json=payload, timeout=self._settings.request_timeout_seconds
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("analytics_capture_failed", analytics_event=event, error=str(exc))
            return False
        return True


__all__ = ["AnalyticsClient"]
