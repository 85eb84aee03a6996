from fastapi import APIRouter

from sheetspeak.api.routers import (
    admin,
    files,
    subscriptions,
    tts,
    tts_messages,
    tts_settings,
    usage,
    voices,
    webhooks,
)


def setup_routers() -> APIRouter:
    router = APIRouter()
    router.include_router(files.router)
    router.include_router(tts.router)
    router.include_router(usage.router)
    router.include_router(voices.router)
    router.include_router(tts_settings.router)
    router.include_router(tts_messages.router)
    router.include_router(subscriptions.router)
    router.include_router(webhooks.router)
    router.include_router(admin.router)
    return router


__all__ = ["setup_routers"]
