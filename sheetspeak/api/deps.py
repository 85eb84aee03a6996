"""FastAPI dependencies: request-scoped session, current user, shared clients."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.api.middlewares import ThrottleMiddleware
from sheetspeak.config import SheetSpeakSettings
from sheetspeak.db.models.core import User
from sheetspeak.db.session import Database
from sheetspeak.logging import bind_log_context
from sheetspeak.services.analytics import AnalyticsClient
from sheetspeak.services.auth import AccountService, TokenVerifier
from sheetspeak.services.documents import TextExtractor
from sheetspeak.services.exceptions import PermissionDenied
from sheetspeak.services.storage import ObjectStorage
from sheetspeak.services.tts.registry import ProviderRegistry


def get_app_settings(request: Request) -> SheetSpeakSettings:
    return request.app.state.settings


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    """One session per request: commit on success, roll back on any error."""

    database: Database = request.app.state.database
    async with database.session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.providers


def get_extractor(request: Request) -> TextExtractor:
    return request.app.state.extractor


def get_analytics(request: Request) -> AnalyticsClient:
    return request.app.state.analytics


async def enforce_rate_limit(request: Request, response: Response) -> None:
    throttle: ThrottleMiddleware = request.app.state.throttle
    await throttle(request, response)


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user(
    request: Request,
    session: AsyncSession = Depends(get_session),
    settings: SheetSpeakSettings = Depends(get_app_settings),
) -> User:
    verifier: TokenVerifier = request.app.state.token_verifier
    identity = await verifier.verify(_bearer_token(request))
    user = await AccountService(session, settings).resolve(identity)
    request.state.user = user
    bind_log_context(user_id=user.id)
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise PermissionDenied("Admin access required")
    return user


__all__ = [
    "enforce_rate_limit",
    "get_analytics",
    "get_app_settings",
    "get_current_user",
    "get_extractor",
    "get_registry",
    "get_session",
    "get_storage",
    "require_admin",
]
