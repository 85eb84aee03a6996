"""Startup seed helpers."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.config import SheetSpeakSettings
from sheetspeak.db.models.core import SubscriptionTier
from sheetspeak.logging import logger
from sheetspeak.utils.datetime import utc_now


def default_tiers(settings: SheetSpeakSettings) -> tuple[dict, ...]:
    quota = settings.quota
    return (
        {
            "code": "FREE",
            "name": "Free",
            "description": "Free tier with Polly standard voices",
            "monthly_price": 0,
            "daily_character_limit": quota.free_daily_characters,
            "monthly_character_limit": quota.free_monthly_characters,
            "yearly_character_limit": quota.free_yearly_characters,
            "priority": 0,
            "is_default": True,
        },
        {
            "code": "BASIC",
            "name": "Basic",
            "description": "Basic tier",
            "monthly_price": 999,
            "daily_character_limit": 25_000,
            "monthly_character_limit": 250_000,
            "yearly_character_limit": 2_500_000,
            "priority": 50,
            "is_default": False,
        },
        {
            "code": "PRO",
            "name": "Pro",
            "description": "Pro tier",
            "monthly_price": 2999,
            "daily_character_limit": None,
            "monthly_character_limit": 1_000_000,
            "yearly_character_limit": None,
            "priority": 100,
            "is_default": False,
        },
    )


async def ensure_subscription_tiers(session: AsyncSession, settings: SheetSpeakSettings) -> None:
    """Ensure default Free/Basic/Pro tiers exist and stay in sync."""

    synced_fields = (
        "name",
        "description",
        "monthly_price",
        "daily_character_limit",
        "monthly_character_limit",
        "yearly_character_limit",
        "priority",
        "is_default",
    )
    for payload in default_tiers(settings):
        stmt = select(SubscriptionTier).where(SubscriptionTier.code == payload["code"])
        result = await session.execute(stmt)
        tier = result.scalar_one_or_none()
        now = utc_now()
        if tier:
            for name in synced_fields:
                setattr(tier, name, payload[name])
            tier.is_active = True
            tier.updated_at = now
        else:
            session.add(SubscriptionTier(**payload, is_active=True, created_at=now, updated_at=now))

    await session.commit()
    logger.info("subscription_tiers_synced", count=len(default_tiers(settings)))


__all__ = ["default_tiers", "ensure_subscription_tiers"]
