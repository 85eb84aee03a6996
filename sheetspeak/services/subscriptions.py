"""Subscription tier resolution and Stripe state mirroring."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sheetspeak.config import SheetSpeakSettings, get_settings
from sheetspeak.db.models.core import Subscription, SubscriptionTier, User
from sheetspeak.logging import logger
from sheetspeak.services.exceptions import InvalidRequest, SubscriptionError
from sheetspeak.utils.datetime import ensure_utc, utc_now

ACTIVE_STATUSES = ("active", "trialing")


@dataclass(slots=True)
class StripeSubscriptionState:
    """Subset of a Stripe subscription object mirrored locally."""

    subscription_id: str
    status: str
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    customer_id: str | None = None


class SubscriptionService:
    def __init__(self, session: AsyncSession, settings: SheetSpeakSettings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()

    async def get_active_subscription(self, user: User) -> Subscription | None:
        now = utc_now()
        stmt = (
            select(Subscription)
            .join(Subscription.tier)
            .options(selectinload(Subscription.tier))
            .where(
                and_(
                    Subscription.user_id == user.id,
                    Subscription.status.in_(ACTIVE_STATUSES),
                    or_(
                        Subscription.current_period_end.is_(None),
                        Subscription.current_period_end > now,
                    ),
                )
            )
            .order_by(SubscriptionTier.priority.desc(), Subscription.created_at.desc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_tier(self, user: User) -> SubscriptionTier:
        subscription = await self.get_active_subscription(user)
        if not subscription:
            subscription = await self.ensure_default_subscription(user)
        tier = subscription.tier
        if tier is None:
            tier = await self.session.get(SubscriptionTier, subscription.tier_id)
        if tier:
            return tier
        raise SubscriptionError("No default subscription tier configured.")

    async def get_tier_limits(self, user: User) -> dict[str, int | None]:
        """Character ceilings of the user's tier; ``None`` means unbounded."""

        tier = await self.get_tier(user)
        return {
            "daily": tier.daily_character_limit,
            "monthly": tier.monthly_character_limit,
            "yearly": tier.yearly_character_limit,
        }

    async def ensure_default_subscription(self, user: User) -> Subscription:
        """Make sure the user always has an active default tier record."""

        default_tier = await self._get_default_tier()
        if default_tier is None:
            raise SubscriptionError("No default subscription tier configured.")

        stmt = (
            select(Subscription)
            .options(selectinload(Subscription.tier))
            .where(
                Subscription.user_id == user.id,
                Subscription.tier_id == default_tier.id,
                Subscription.stripe_subscription_id.is_(None),
            )
        )
        result = await self.session.execute(stmt)
        subscription = result.scalars().first()
        now = utc_now()
        if subscription is None:
            subscription = Subscription(
                user_id=user.id,
                tier_id=default_tier.id,
                status="active",
                current_period_start=now,
                current_period_end=None,
            )
            self.session.add(subscription)
            subscription.tier = default_tier
        else:
            if subscription.status != "active":
                subscription.status = "active"
            subscription.current_period_end = None
            subscription.tier = default_tier

        await self.session.flush()
        return subscription

    async def is_subscribed(self, user: User) -> bool:
        """True when the newest paid subscription is live and inside its period."""

        subscription = await self.get_latest_paid_subscription(user)
        if subscription is None:
            return False
        period_end = ensure_utc(subscription.current_period_end)
        return (
            subscription.status in ACTIVE_STATUSES
            and period_end is not None
            and period_end > utc_now()
        )

    async def get_latest_paid_subscription(self, user: User) -> Subscription | None:
        stmt = (
            select(Subscription)
            .options(selectinload(Subscription.tier))
            .where(
                Subscription.user_id == user.id,
                Subscription.stripe_subscription_id.is_not(None),
            )
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_customer_id(self, user: User) -> str | None:
        stmt = (
            select(Subscription.stripe_customer_id)
            .where(
                Subscription.user_id == user.id,
                Subscription.stripe_customer_id.is_not(None),
            )
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def get_purchasable_tier(self, tier_id: int) -> SubscriptionTier:
        tier = await self.session.get(SubscriptionTier, tier_id)
        if tier is None or not tier.is_active:
            raise InvalidRequest("Invalid subscription tier")
        if tier.monthly_price <= 0:
            raise InvalidRequest("Tier does not require a paid subscription")
        return tier

    async def list_tiers(self) -> list[SubscriptionTier]:
        stmt = (
            select(SubscriptionTier)
            .where(SubscriptionTier.is_active.is_(True))
            .order_by(SubscriptionTier.priority.asc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def record_checkout(
        self,
        *,
        user_id: int,
        tier_id: int,
        state: StripeSubscriptionState,
    ) -> Subscription:
        """Insert (or refresh) the record for a completed checkout."""

        subscription = await self._get_by_stripe_id(state.subscription_id)
        if subscription is None:
            subscription = Subscription(
                user_id=user_id,
                tier_id=tier_id,
                stripe_subscription_id=state.subscription_id,
            )
            self.session.add(subscription)
        else:
            subscription.tier_id = tier_id
        subscription.stripe_customer_id = state.customer_id or subscription.stripe_customer_id
        self._apply_state(subscription, state)
        await self.session.flush()
        logger.info(
            "subscription_recorded",
            user_id=user_id,
            tier_id=tier_id,
            stripe_subscription_id=state.subscription_id,
            status=subscription.status,
        )
        return subscription

    async def apply_stripe_update(self, state: StripeSubscriptionState) -> Subscription | None:
        subscription = await self._get_by_stripe_id(state.subscription_id)
        if subscription is None:
            logger.warning("subscription_update_unknown", stripe_subscription_id=state.subscription_id)
            return None
        self._apply_state(subscription, state)
        await self.session.flush()
        logger.info(
            "subscription_updated",
            subscription_id=subscription.id,
            status=subscription.status,
            cancel_at_period_end=subscription.cancel_at_period_end,
        )
        return subscription

    async def mark_canceled(self, stripe_subscription_id: str) -> Subscription | None:
        subscription = await self._get_by_stripe_id(stripe_subscription_id)
        if subscription is None:
            logger.warning("subscription_delete_unknown", stripe_subscription_id=stripe_subscription_id)
            return None
        subscription.status = "canceled"
        subscription.updated_at = utc_now()
        await self.session.flush()
        logger.info("subscription_canceled", subscription_id=subscription.id)
        return subscription

    # Internal helpers -------------------------------------------------

    async def _get_default_tier(self) -> SubscriptionTier | None:
        stmt = (
            select(SubscriptionTier)
            .where(
                SubscriptionTier.is_default.is_(True),
                SubscriptionTier.is_active.is_(True),
            )
            .order_by(SubscriptionTier.priority.desc())
        )
        result = await self.session.execute(stmt)
        return result.scalars().first()

    async def _get_by_stripe_id(self, stripe_subscription_id: str) -> Subscription | None:
        stmt = select(Subscription).where(
            Subscription.stripe_subscription_id == stripe_subscription_id
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    def _apply_state(subscription: Subscription, state: StripeSubscriptionState) -> None:
        subscription.status = state.status
        if state.current_period_start is not None:
            subscription.current_period_start = state.current_period_start
        if state.current_period_end is not None:
            subscription.current_period_end = state.current_period_end
        subscription.cancel_at_period_end = state.cancel_at_period_end
        subscription.updated_at = utc_now()


__all__ = ["ACTIVE_STATUSES", "StripeSubscriptionState", "SubscriptionService"]
