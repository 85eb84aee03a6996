from __future__ import annotations

import json

import httpx
import pytest

from sheetspeak.config import AnalyticsSettings
from sheetspeak.db.models.core import User
from sheetspeak.services.analytics import AnalyticsClient


@pytest.mark.asyncio
async def test_capture_posts_event():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"status": 1})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        analytics = AnalyticsClient(client, AnalyticsSettings(posthog_key="phc_test"))
        sent = await analytics.capture("tts_conversion_started", User(auth_id="auth-1"), {"service": "polly"})

    assert sent is True
    assert seen["url"] == "https://us.i.posthog.com/capture/"
    assert seen["body"]["distinct_id"] == "auth-1"
    assert seen["body"]["event"] == "tts_conversion_started"
    assert seen["body"]["properties"] == {"service": "polly", "source": "server"}


@pytest.mark.asyncio
async def test_capture_is_skipped_without_key_or_user():
    async with httpx.AsyncClient() as client:
        assert await AnalyticsClient(client, AnalyticsSettings()).capture("e", User(auth_id="a")) is False
        enabled = AnalyticsClient(client, AnalyticsSettings(posthog_key="phc_test"))
        assert await enabled.capture("e", None) is False


@pytest.mark.asyncio
async def test_capture_failures_are_swallowed():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("down", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        analytics = AnalyticsClient(client, AnalyticsSettings(posthog_key="phc_test"))
        assert await analytics.capture("e", User(auth_id="a")) is False
