"""Character quota aggregation over calendar windows and the gate built on it.

Usage rows are summed per user over three UTC calendar windows (today,
this month, this year), each compared against the tier's ceiling for that
period. The check and the later usage insert are not wrapped in a lock, so
concurrent requests from one user can overshoot a limit by at most one
request's character count.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.config import QuotaSettings, SheetSpeakSettings, get_settings
from sheetspeak.db.models.core import UsageRecord, User, UserTtsSettings
from sheetspeak.logging import logger
from sheetspeak.services.exceptions import (
    InvalidCharacterCount,
    QuotaExceeded,
    SubscriptionError,
)
from sheetspeak.services.subscriptions import SubscriptionService
from sheetspeak.utils.datetime import ensure_utc, utc_now


class QuotaPeriod(str, enum.Enum):
    DAY = "day"
    MONTH = "month"
    YEAR = "year"


def period_start(period: QuotaPeriod, now: datetime) -> datetime:
    """Start of the calendar window containing ``now`` (UTC)."""

    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period is QuotaPeriod.DAY:
        return midnight
    if period is QuotaPeriod.MONTH:
        return midnight.replace(day=1)
    return midnight.replace(month=1, day=1)


def validate_character_count(value: Any) -> int:
    # bool is an int subclass but never a meaningful count.
    if isinstance(value, bool):
        raise InvalidCharacterCount("Invalid characters count")
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidCharacterCount("Invalid characters count")
        value = int(value)
    if not isinstance(value, int) or value < 0:
        raise InvalidCharacterCount("Invalid characters count")
    return value


@dataclass(slots=True, frozen=True)
class TierLimits:
    """Character ceilings per period; ``None`` leaves the period unbounded."""

    daily: int | None = None
    monthly: int | None = None
    yearly: int | None = None

    def for_period(self, period: QuotaPeriod) -> int | None:
        if period is QuotaPeriod.DAY:
            return self.daily
        if period is QuotaPeriod.MONTH:
            return self.monthly
        return self.yearly

    @classmethod
    def from_settings(cls, settings: QuotaSettings) -> "TierLimits":
        return cls(
            daily=settings.free_daily_characters,
            monthly=settings.free_monthly_characters,
            yearly=settings.free_yearly_characters,
        )


@dataclass(slots=True)
class PeriodUsage:
    period: QuotaPeriod
    usage: int
    limit: int | None

    @property
    def headroom(self) -> int | None:
        if self.limit is None:
            return None
        return max(0, self.limit - self.usage)

    def admits(self, requested: int) -> bool:
        if self.limit is None:
            return True
        return self.usage < self.limit and self.usage + requested <= self.limit


@dataclass(slots=True)
class QuotaDecision:
    allowed: bool
    current_usage: int
    remaining_characters: int | None
    limit: int | None
    period: QuotaPeriod | None = None
    unlimited: bool = False
    requested: int = 0
    periods: list[PeriodUsage] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "currentUsage": self.current_usage,
            "remainingCharacters": self.remaining_characters,
            "limit": self.limit,
            "period": self.period.value if self.period else None,
            "unlimited": self.unlimited,
            "periods": [
                {"period": item.period.value, "usage": item.usage, "limit": item.limit}
                for item in self.periods
            ],
        }


def evaluate_quota(
    limits: TierLimits,
    totals: dict[QuotaPeriod, int],
    requested: int,
) -> QuotaDecision:
    """Compare summed usage against limits and pick the binding period.

    The binding period is the bounded one with the least headroom; ties go
    to the shorter window. ``remaining_characters`` is what is left after
    the request when it is admitted, and the current headroom otherwise.
    """

    periods = [
        PeriodUsage(period, int(totals.get(period, 0) or 0), limits.for_period(period))
        for period in QuotaPeriod
    ]
    bounded = [item for item in periods if item.limit is not None]
    if not bounded:
        return QuotaDecision(
            allowed=True,
            current_usage=int(totals.get(QuotaPeriod.MONTH, 0) or 0),
            remaining_characters=None,
            limit=None,
            unlimited=True,
            requested=requested,
            periods=periods,
        )

    binding = min(bounded, key=lambda item: item.headroom)
    allowed = all(item.admits(requested) for item in bounded)
    headroom = binding.headroom or 0
    return QuotaDecision(
        allowed=allowed,
        current_usage=binding.usage,
        remaining_characters=headroom - requested if allowed else headroom,
        limit=binding.limit,
        period=binding.period,
        requested=requested,
        periods=periods,
    )


class UsageAggregator:
    """Sums ``characters_synthesized`` per calendar window in one query."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def totals(self, user_id: int, now: datetime | None = None) -> dict[QuotaPeriod, int]:
        now = ensure_utc(now) or utc_now()
        starts = {period: period_start(period, now) for period in QuotaPeriod}
        columns = [
            func.coalesce(
                func.sum(
                    case(
                        (
                            UsageRecord.synthesis_date >= start,
                            UsageRecord.characters_synthesized,
                        ),
                        else_=0,
                    )
                ),
                0,
            ).label(period.value)
            for period, start in starts.items()
        ]
        stmt = select(*columns).where(
            and_(
                UsageRecord.user_id == user_id,
                UsageRecord.synthesis_date >= min(starts.values()),
                UsageRecord.synthesis_date <= now,
            )
        )
        row = (await self.session.execute(stmt)).one()
        mapping = row._mapping
        return {period: int(mapping[period.value] or 0) for period in QuotaPeriod}

    async def total_for(
        self, user_id: int, period: QuotaPeriod, now: datetime | None = None
    ) -> int:
        totals = await self.totals(user_id, now)
        return totals[period]


class QuotaGate:
    """Decides whether a user may synthesize ``requested`` more characters."""

    def __init__(
        self,
        session: AsyncSession,
        settings: SheetSpeakSettings | None = None,
        *,
        aggregator: UsageAggregator | None = None,
        subscriptions: SubscriptionService | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.aggregator = aggregator or UsageAggregator(session)
        self.subscriptions = subscriptions or SubscriptionService(session, self.settings)

    async def check(
        self,
        user: User,
        requested: Any,
        *,
        custom_credentials: bool | None = None,
        now: datetime | None = None,
    ) -> QuotaDecision:
        requested = validate_character_count(requested)
        if custom_credentials is None:
            custom_credentials = await self.has_custom_credentials(user)
        if custom_credentials:
            logger.info("quota_bypassed", user_id=user.id, requested=requested)
            return QuotaDecision(
                allowed=True,
                current_usage=0,
                remaining_characters=None,
                limit=None,
                unlimited=True,
                requested=requested,
            )

        limits = await self.resolve_limits(user)
        totals = await self.aggregator.totals(user.id, now)
        decision = evaluate_quota(limits, totals, requested)
        logger.info(
            "quota_checked",
            user_id=user.id,
            requested=requested,
            allowed=decision.allowed,
            period=decision.period.value if decision.period else None,
            current_usage=decision.current_usage,
            limit=decision.limit,
        )
        return decision

    async def enforce(
        self,
        user: User,
        requested: Any,
        *,
        custom_credentials: bool | None = None,
        now: datetime | None = None,
    ) -> QuotaDecision:
        decision = await self.check(
            user, requested, custom_credentials=custom_credentials, now=now
        )
        if not decision.allowed:
            raise QuotaExceeded("Usage limit exceeded", **decision.as_dict())
        return decision

    async def has_custom_credentials(self, user: User) -> bool:
        stmt = select(UserTtsSettings).where(UserTtsSettings.user_id == user.id)
        result = await self.session.execute(stmt)
        tts_settings = result.scalar_one_or_none()
        return bool(tts_settings and tts_settings.has_custom_credentials)

    async def resolve_limits(self, user: User) -> TierLimits:
        try:
            limits = await self.subscriptions.get_tier_limits(user)
        except SubscriptionError:
            logger.warning("quota_default_limits_used", user_id=user.id)
            return TierLimits.from_settings(self.settings.quota)
        return TierLimits(**limits)


__all__ = [
    "PeriodUsage",
    "QuotaDecision",
    "QuotaGate",
    "QuotaPeriod",
    "TierLimits",
    "UsageAggregator",
    "evaluate_quota",
    "period_start",
    "validate_character_count",
]
