"""Map service exceptions onto JSON error responses."""

from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from sheetspeak.config import SheetSpeakSettings
from sheetspeak.logging import logger
from sheetspeak.services.error_monitor import ErrorMonitor
from sheetspeak.services.exceptions import ServiceError


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "service_error",
            error_type=exc.__class__.__name__,
            error=exc.message,
            path=request.url.path,
        )
    else:
        logger.info(
            "request_rejected",
            error_type=exc.__class__.__name__,
            status=exc.status_code,
            path=request.url.path,
        )
    return JSONResponse(
        {"error": exc.message, **exc.details},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None) or None,
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        {"error": f"{field}: {message}" if field else message},
        status_code=400,
    )


def register_error_handlers(app: FastAPI, settings: SheetSpeakSettings) -> ErrorMonitor:
    monitor = ErrorMonitor(settings=settings)
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, monitor.handle_error)
    return monitor


__all__ = ["register_error_handlers", "service_error_handler", "validation_error_handler"]
