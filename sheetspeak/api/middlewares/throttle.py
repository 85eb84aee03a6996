"""Fixed-window request throttle keyed by client IP and path."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Dict

from fastapi import Request, Response

from sheetspeak.config import SheetSpeakSettings, get_settings
from sheetspeak.logging import logger
from sheetspeak.services.exceptions import RateLimitExceeded


@dataclass(slots=True)
class _Window:
    count: int
    reset_at: float


@dataclass(slots=True)
class ThrottleState:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(math.ceil(self.reset_at)),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client is not None:
        return request.client.host
    return "unknown"


class ThrottleMiddleware:
    """Dependency that admits ``max_requests`` per window and stamps rate headers.

    State is in-process; each worker keeps its own windows.
    """

    def __init__(
        self,
        settings: SheetSpeakSettings | None = None,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings or get_settings()
        self.window_seconds = self.settings.request_limit.interval_seconds
        self.max_requests = self.settings.request_limit.max_requests
        self._clock = clock
        self._windows: Dict[str, _Window] = {}

    async def __call__(self, request: Request, response: Response) -> None:
        key = f"{client_ip(request)}-{request.url.path}"
        state = self.hit(key)
        if not state.allowed:
            logger.info("request_throttled", key=key, retry_after=state.retry_after)
            raise RateLimitExceeded(
                "Too many requests",
                headers=state.headers(),
                retryAfter=state.retry_after,
            )
        response.headers.update(state.headers())

    def hit(self, key: str) -> ThrottleState:
        now = self._clock()
        self._purge(now)

        window = self._windows.get(key)
        if window is None:
            window = _Window(count=0, reset_at=now + self.window_seconds)
            self._windows[key] = window

        retry_after = max(1, math.ceil(window.reset_at - now))
        if window.count >= self.max_requests:
            return ThrottleState(False, self.max_requests, 0, window.reset_at, retry_after)

        window.count += 1
        return ThrottleState(
            True,
            self.max_requests,
            self.max_requests - window.count,
            window.reset_at,
            retry_after,
        )

    def _purge(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if window.reset_at <= now]
        for key in expired:
            del self._windows[key]


__all__ = ["ThrottleMiddleware", "ThrottleState", "client_ip"]
