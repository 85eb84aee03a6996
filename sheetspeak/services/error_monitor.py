"""Capture unhandled API errors as structured log records."""

from __future__ import annotations

import json
import traceback
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from sheetspeak.config import SheetSpeakSettings
from sheetspeak.logging import logger

TRACEBACK_CHAR_LIMIT = 1800
PAYLOAD_CHAR_LIMIT = 1200


class ErrorMonitor:
    """Exception handler registered for anything the service layer did not map."""

    def __init__(self, settings: SheetSpeakSettings) -> None:
        self._settings = settings

    async def handle_error(self, request: Request, exception: Exception) -> JSONResponse:
        summary = self.build_summary(request, exception)
        logger.error("api_error_captured", **summary)

        body: dict[str, Any] = {"error": "Internal Server Error"}
        if self._settings.environment == "dev":
            body["details"] = f"{exception.__class__.__name__}: {exception}"
        return JSONResponse(body, status_code=500)

    def build_summary(self, request: Request, exception: Exception) -> dict[str, Any]:
        user = getattr(request.state, "user", None)
        return {
            "environment": self._settings.environment,
            "exception_type": exception.__class__.__name__,
            "exception": str(exception),
            "method": request.method,
            "path": request.url.path,
            "query": self._pretty_json(dict(request.query_params)),
            "user_id": getattr(user, "id", None),
            "traceback": self._format_traceback(exception),
        }

    def _format_traceback(self, exception: Exception) -> str:
        trace = "".join(traceback.format_exception(exception.__class__, exception, exception.__traceback__))
        trace = trace.strip()
        if not trace:
            return ""
        return self._truncate(trace, TRACEBACK_CHAR_LIMIT)

    def _pretty_json(self, payload: Any) -> str:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, default=str)
        except TypeError:
            serialized = str(payload)
        return self._truncate(serialized, PAYLOAD_CHAR_LIMIT)

    @staticmethod
    def _truncate(value: str, limit: int) -> str:
        value = value.strip()
        if len(value) <= limit:
            return value
        # Keep the tail: the innermost frames are at the end.
        return f"...[truncated]\n{value[-(limit - 15):].lstrip()}"


__all__ = ["ErrorMonitor"]
