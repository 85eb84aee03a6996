"""Fixed-window request throttle."""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi import Response
from starlette.requests import Request

from sheetspeak.api.middlewares import ThrottleMiddleware
from sheetspeak.api.middlewares.throttle import client_ip
from sheetspeak.services.exceptions import RateLimitExceeded


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _stub_settings(max_requests: int = 2, interval: int = 60) -> SimpleNamespace:
    return SimpleNamespace(
        request_limit=SimpleNamespace(max_requests=max_requests, interval_seconds=interval)
    )


def _request(path: str = "/api/tts", headers: dict | None = None, host: str = "10.0.0.1") -> Request:
    raw_headers = [(key.lower().encode(), value.encode()) for key, value in (headers or {}).items()]
    return Request(
        {
            "type": "http",
            "method": "POST",
            "path": path,
            "headers": raw_headers,
            "client": (host, 5555),
            "query_string": b"",
            "scheme": "http",
            "server": ("testserver", 80),
        }
    )


def test_client_ip_prefers_first_forwarded_hop():
    request = _request(headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.2"})

    assert client_ip(request) == "203.0.113.9"
    assert client_ip(_request()) == "10.0.0.1"


def test_window_counts_and_resets():
    clock = FakeClock()
    throttle = ThrottleMiddleware(_stub_settings(max_requests=2, interval=60), clock=clock)

    first = throttle.hit("ip-/path")
    second = throttle.hit("ip-/path")
    third = throttle.hit("ip-/path")

    assert (first.allowed, first.remaining) == (True, 1)
    assert (second.allowed, second.remaining) == (True, 0)
    assert third.allowed is False
    assert third.retry_after == 60

    clock.now += 61
    assert throttle.hit("ip-/path").allowed is True


def test_expired_windows_are_purged():
    clock = FakeClock()
    throttle = ThrottleMiddleware(_stub_settings(), clock=clock)
    throttle.hit("a")
    throttle.hit("b")

    clock.now += 120
    throttle.hit("c")

    assert set(throttle._windows) == {"c"}


def test_denied_state_headers():
    clock = FakeClock(500.0)
    throttle = ThrottleMiddleware(_stub_settings(max_requests=1, interval=30), clock=clock)
    throttle.hit("k")
    clock.now += 10

    headers = throttle.hit("k").headers()

    assert headers == {
        "X-RateLimit-Limit": "1",
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": "530",
        "Retry-After": "20",
    }


@pytest.mark.asyncio
async def test_dependency_sets_headers_and_raises():
    throttle = ThrottleMiddleware(_stub_settings(max_requests=1), clock=FakeClock())
    response = Response()

    await throttle(_request(), response)
    assert response.headers["X-RateLimit-Remaining"] == "0"

    with pytest.raises(RateLimitExceeded) as excinfo:
        await throttle(_request(), Response())
    assert excinfo.value.status_code == 429
    assert excinfo.value.details["retryAfter"] == 60
    assert excinfo.value.headers["Retry-After"] == "60"


@pytest.mark.asyncio
async def test_paths_and_clients_have_separate_windows():
    throttle = ThrottleMiddleware(_stub_settings(max_requests=1), clock=FakeClock())

    await throttle(_request(path="/api/tts"), Response())
    await throttle(_request(path="/api/convert-audio/polly"), Response())
    await throttle(_request(path="/api/tts", host="10.0.0.7"), Response())
