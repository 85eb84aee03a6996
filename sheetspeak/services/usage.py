"""Append-only usage recording and per-user usage reads."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.db.models.core import UsageRecord, User
from sheetspeak.logging import logger
from sheetspeak.services.quota import QuotaPeriod, UsageAggregator
from sheetspeak.utils.datetime import ensure_utc, utc_now


@dataclass(slots=True)
class DailyUsage:
    day: date
    characters: int

    def as_dict(self) -> dict[str, object]:
        return {"date": self.day.isoformat(), "characters": self.characters}


class UsageRecorder:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def record(
        self,
        user: User,
        characters: int,
        *,
        voice_id: str | None,
        provider: str = "polly",
        content_hash: str | None = None,
        synthesized_at: datetime | None = None,
    ) -> UsageRecord:
        """Insert one usage row. No deduplication: every call adds a row."""

        record = UsageRecord(
            user_id=user.id,
            characters_synthesized=characters,
            voice_id=voice_id,
            provider=provider,
            content_hash=content_hash,
            synthesis_date=ensure_utc(synthesized_at) or utc_now(),
        )
        self.session.add(record)
        await self.session.flush()
        logger.info(
            "usage_recorded",
            user_id=user.id,
            characters=characters,
            voice_id=voice_id,
            provider=provider,
        )
        return record

    async def monthly_usage(self, user: User, now: datetime | None = None) -> int:
        aggregator = UsageAggregator(self.session)
        return await aggregator.total_for(user.id, QuotaPeriod.MONTH, now)

    async def daily_history(
        self,
        user: User | None,
        days: int = 7,
        now: datetime | None = None,
    ) -> list[DailyUsage]:
        """Per-day totals for the last ``days`` days, oldest first, zero-filled.

        ``user=None`` aggregates across all users.
        """

        now = ensure_utc(now) or utc_now()
        first_day = (now - timedelta(days=days - 1)).date()
        start = now.replace(hour=0, minute=0, second=0, microsecond=0) - timedelta(days=days - 1)
        stmt = select(UsageRecord.synthesis_date, UsageRecord.characters_synthesized).where(
            UsageRecord.synthesis_date >= start,
            UsageRecord.synthesis_date <= now,
        )
        if user is not None:
            stmt = stmt.where(UsageRecord.user_id == user.id)
        result = await self.session.execute(stmt)

        buckets = {first_day + timedelta(days=offset): 0 for offset in range(days)}
        for synthesized_at, characters in result.all():
            day = ensure_utc(synthesized_at).date()
            if day in buckets:
                buckets[day] += characters or 0
        return [DailyUsage(day=day, characters=total) for day, total in buckets.items()]

    async def total_since(self, since: datetime, user: User | None = None) -> int:
        stmt = select(func.coalesce(func.sum(UsageRecord.characters_synthesized), 0)).where(
            UsageRecord.synthesis_date >= since
        )
        if user is not None:
            stmt = stmt.where(UsageRecord.user_id == user.id)
        result = await self.session.execute(stmt)
        return int(result.scalar_one() or 0)


__all__ = ["DailyUsage", "UsageRecorder"]
