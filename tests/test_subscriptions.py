"""Tests for subscription defaults and Stripe state mirroring."""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import select

from sheetspeak.db.models.core import Subscription, SubscriptionTier
from sheetspeak.services.exceptions import InvalidRequest, SubscriptionError
from sheetspeak.services.seeds import default_tiers, ensure_subscription_tiers
from sheetspeak.services.subscriptions import StripeSubscriptionState, SubscriptionService
from sheetspeak.utils.datetime import utc_now


async def _tier(session, code: str) -> SubscriptionTier:
    result = await session.execute(select(SubscriptionTier).where(SubscriptionTier.code == code))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_seeds_create_and_resync_tiers(session, settings):
    await ensure_subscription_tiers(session, settings)
    free = await _tier(session, "FREE")
    free.monthly_character_limit = 1
    free.is_active = False
    await session.flush()

    await ensure_subscription_tiers(session, settings)

    tiers = (await session.execute(select(SubscriptionTier))).scalars().all()
    assert sorted(tier.code for tier in tiers) == ["BASIC", "FREE", "PRO"]
    free = await _tier(session, "FREE")
    assert free.is_default is True
    assert free.is_active is True
    assert free.monthly_character_limit == settings.quota.free_monthly_characters


def test_default_tiers_use_quota_settings(settings):
    free = default_tiers(settings)[0]

    assert free["code"] == "FREE"
    assert free["daily_character_limit"] == settings.quota.free_daily_characters
    assert free["monthly_price"] == 0


@pytest.mark.asyncio
async def test_default_subscription_is_created_once(seeded, settings, user):
    service = SubscriptionService(seeded, settings)

    first = await service.ensure_default_subscription(user)
    second = await service.ensure_default_subscription(user)

    assert first.id == second.id
    assert first.tier.code == "FREE"
    assert first.current_period_end is None


@pytest.mark.asyncio
async def test_get_tier_prefers_paid_subscription(seeded, settings, user):
    service = SubscriptionService(seeded, settings)
    await service.ensure_default_subscription(user)
    pro = await _tier(seeded, "PRO")
    seeded.add(
        Subscription(
            user_id=user.id,
            tier_id=pro.id,
            status="active",
            stripe_subscription_id="sub_123",
            current_period_end=utc_now() + timedelta(days=10),
        )
    )
    await seeded.flush()

    tier = await service.get_tier(user)

    assert tier.code == "PRO"
    assert await service.is_subscribed(user) is True
    assert await service.get_tier_limits(user) == {
        "daily": None,
        "monthly": 1_000_000,
        "yearly": None,
    }


@pytest.mark.asyncio
async def test_expired_paid_subscription_falls_back(seeded, settings, user):
    service = SubscriptionService(seeded, settings)
    basic = await _tier(seeded, "BASIC")
    seeded.add(
        Subscription(
            user_id=user.id,
            tier_id=basic.id,
            status="active",
            stripe_subscription_id="sub_old",
            current_period_end=utc_now() - timedelta(days=1),
        )
    )
    await seeded.flush()

    assert (await service.get_tier(user)).code == "FREE"
    assert await service.is_subscribed(user) is False


@pytest.mark.asyncio
async def test_missing_default_tier_raises(session, settings, user):
    with pytest.raises(SubscriptionError):
        await SubscriptionService(session, settings).get_tier(user)


@pytest.mark.asyncio
async def test_purchasable_tier_validation(seeded, settings):
    service = SubscriptionService(seeded, settings)
    free = await _tier(seeded, "FREE")
    basic = await _tier(seeded, "BASIC")

    assert (await service.get_purchasable_tier(basic.id)).code == "BASIC"
    with pytest.raises(InvalidRequest, match="Tier does not require a paid subscription"):
        await service.get_purchasable_tier(free.id)
    with pytest.raises(InvalidRequest, match="Invalid subscription tier"):
        await service.get_purchasable_tier(9_999)


@pytest.mark.asyncio
async def test_stripe_state_lifecycle(seeded, settings, user):
    service = SubscriptionService(seeded, settings)
    basic = await _tier(seeded, "BASIC")
    end = utc_now() + timedelta(days=30)

    recorded = await service.record_checkout(
        user_id=user.id,
        tier_id=basic.id,
        state=StripeSubscriptionState(
            subscription_id="sub_abc",
            status="active",
            current_period_start=utc_now(),
            current_period_end=end,
            customer_id="cus_1",
        ),
    )
    assert recorded.stripe_customer_id == "cus_1"
    assert await service.get_customer_id(user) == "cus_1"

    updated = await service.apply_stripe_update(
        StripeSubscriptionState(subscription_id="sub_abc", status="past_due", cancel_at_period_end=True)
    )
    assert updated.status == "past_due"
    assert updated.cancel_at_period_end is True
    assert updated.current_period_end is not None

    canceled = await service.mark_canceled("sub_abc")
    assert canceled.status == "canceled"
    assert await service.mark_canceled("sub_missing") is None


@pytest.mark.asyncio
async def test_list_tiers_orders_by_priority(seeded, settings):
    tiers = await SubscriptionService(seeded, settings).list_tiers()

    assert [tier.code for tier in tiers] == ["FREE", "BASIC", "PRO"]
