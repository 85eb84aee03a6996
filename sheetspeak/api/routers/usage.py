"""Character usage reads and the quota pre-check."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.api.deps import get_app_settings, get_current_user, get_session
from sheetspeak.config import SheetSpeakSettings
from sheetspeak.db.models.core import User
from sheetspeak.domain.models import CheckLimitRequest
from sheetspeak.logging import logger
from sheetspeak.services.exceptions import ServiceError
from sheetspeak.services.quota import QuotaGate
from sheetspeak.services.usage import UsageRecorder

router = APIRouter(prefix="/api", tags=["usage"])


@router.get("/usage")
async def monthly_usage(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> dict:
    characters = await UsageRecorder(session).monthly_usage(user)
    return {"characters": characters}


@router.get("/usage/quota")
async def quota_status(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    settings: SheetSpeakSettings = Depends(get_app_settings),
) -> dict:
    decision = await QuotaGate(session, settings).check(user, 0)
    return decision.as_dict()


@router.get("/usage/history")
async def usage_history(
    days: int | None = Query(default=None, ge=1, le=366),
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    settings: SheetSpeakSettings = Depends(get_app_settings),
) -> dict:
    history = await UsageRecorder(session).daily_history(
        user, days or settings.quota.history_days
    )
    return {"history": [entry.as_dict() for entry in history]}


@router.post("/voices/polly/check-limit")
async def check_limit(
    body: CheckLimitRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    settings: SheetSpeakSettings = Depends(get_app_settings),
) -> dict:
    try:
        decision = await QuotaGate(session, settings).check(user, body.characters)
    except SQLAlchemyError as exc:
        logger.error("usage_limit_check_failed", user_id=user.id, error=str(exc))
        raise ServiceError("Failed to check usage limit") from exc
    return decision.as_dict()


__all__ = ["router"]
