"""Application entrypoint."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sheetspeak.api.errors import register_error_handlers
from sheetspeak.api.middlewares import RequestContextMiddleware, ThrottleMiddleware
from sheetspeak.api.routers import setup_routers
from sheetspeak.config import SheetSpeakSettings, get_settings
from sheetspeak.db.session import Database
from sheetspeak.logging import configure_logging, logger
from sheetspeak.services.analytics import AnalyticsClient
from sheetspeak.services.auth import TokenVerifier
from sheetspeak.services.documents import TextExtractor
from sheetspeak.services.seeds import ensure_subscription_tiers
from sheetspeak.services.storage import ObjectStorage
from sheetspeak.services.tts.registry import ProviderRegistry


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings: SheetSpeakSettings = app.state.settings
    configure_logging(settings.log_level)

    http_client = httpx.AsyncClient(follow_redirects=True)
    database = Database(settings=settings)
    app.state.http_client = http_client
    app.state.database = database
    app.state.providers = ProviderRegistry.from_settings(settings, http_client)
    app.state.storage = ObjectStorage(settings.storage)
    app.state.extractor = TextExtractor(settings.ocr, http_client)
    app.state.analytics = AnalyticsClient(http_client, settings.analytics)
    app.state.token_verifier = TokenVerifier(http_client, settings.auth)

    if settings.seed_tiers_on_startup:
        async with database.session() as seed_session:
            await ensure_subscription_tiers(seed_session, settings)

    logger.info("api_starting", environment=settings.environment, providers=app.state.providers.names)
    try:
        yield
    finally:
        await http_client.aclose()
        await database.dispose()
        logger.info("api_stopped")


def create_app(settings: SheetSpeakSettings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="SheetSpeak", lifespan=lifespan)
    app.state.settings = settings
    app.state.throttle = ThrottleMiddleware(settings)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "Retry-After",
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
        ],
    )
    app.add_middleware(RequestContextMiddleware)
    register_error_handlers(app, settings)
    app.include_router(setup_routers())

    @app.get("/health", tags=["health"])
    async def health() -> dict:
        return {"status": "ok"}

    return app


def run() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
