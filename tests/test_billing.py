"""Stripe checkout, portal and webhook handling with the SDK stubbed out."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from datetime import timedelta

import pytest
import stripe
from sqlalchemy import select

from sheetspeak.config import SheetSpeakSettings
from sheetspeak.db.models.core import Subscription, SubscriptionTier
from sheetspeak.services.billing import StripeBilling, stripe_field, subscription_state
from sheetspeak.services.exceptions import (
    BillingError,
    InvalidRequest,
    NotFound,
    ServiceError,
    WebhookError,
)
from sheetspeak.services.seeds import ensure_subscription_tiers
from sheetspeak.utils.datetime import utc_now

WEBHOOK_SECRET = "whsec_unit_test"


@pytest.fixture
def billing_settings() -> SheetSpeakSettings:
    return SheetSpeakSettings(
        _env_file=None,
        app_origin="https://app.example.com",
        stripe={"secret_key": "sk_test_123", "webhook_secret": WEBHOOK_SECRET},
    )


async def _seed(session, settings) -> SubscriptionTier:
    await ensure_subscription_tiers(session, settings)
    result = await session.execute(select(SubscriptionTier).where(SubscriptionTier.code == "BASIC"))
    return result.scalar_one()


def _sign(payload: str, secret: str = WEBHOOK_SECRET) -> str:
    timestamp = int(time.time())
    digest = hmac.new(secret.encode(), f"{timestamp}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def test_subscription_state_reads_item_periods():
    state = subscription_state(
        {
            "id": "sub_1",
            "status": "trialing",
            "customer": {"id": "cus_1"},
            "items": {"data": [{"current_period_start": 1_700_000_000, "current_period_end": 1_702_592_000}]},
        }
    )

    assert state.subscription_id == "sub_1"
    assert state.customer_id == "cus_1"
    assert state.current_period_end.year == 2023
    assert state.cancel_at_period_end is False


def test_stripe_field_defaults():
    assert stripe_field(None, "id", "x") == "x"
    assert stripe_field({"id": None}, "id", "fallback") == "fallback"
    assert stripe_field({"id": "cus"}, "id") == "cus"


@pytest.mark.asyncio
async def test_checkout_creates_customer_and_session(session, billing_settings, user, monkeypatch):
    basic = await _seed(session, billing_settings)
    calls = {}

    def fake_customer_create(**kwargs):
        calls["customer"] = kwargs
        return {"id": "cus_new"}

    def fake_session_create(**kwargs):
        calls["checkout"] = kwargs
        return {"url": "https://checkout.stripe.test/cs_1", "id": "cs_1"}

    monkeypatch.setattr(stripe.Customer, "create", fake_customer_create)
    monkeypatch.setattr(stripe.checkout.Session, "create", fake_session_create)

    result = await StripeBilling(session, billing_settings).create_checkout(
        user, str(basic.id), "https://frontend.example.com/"
    )

    assert result == {"checkoutUrl": "https://checkout.stripe.test/cs_1", "sessionId": "cs_1"}
    assert calls["customer"]["email"] == user.email
    assert calls["customer"]["api_key"] == "sk_test_123"
    checkout = calls["checkout"]
    assert checkout["customer"] == "cus_new"
    assert checkout["mode"] == "subscription"
    assert checkout["metadata"] == {"userId": str(user.id), "tierId": str(basic.id)}
    price = checkout["line_items"][0]["price_data"]
    assert price["unit_amount"] == 999
    assert price["recurring"] == {"interval": "month"}
    assert checkout["success_url"] == "https://frontend.example.com/protected/subscription?success=true"


@pytest.mark.asyncio
async def test_checkout_rejects_missing_or_invalid_tier(session, billing_settings, user):
    await _seed(session, billing_settings)
    billing = StripeBilling(session, billing_settings)

    with pytest.raises(InvalidRequest, match="Tier ID is required"):
        await billing.create_checkout(user, None)
    with pytest.raises(InvalidRequest, match="Invalid subscription tier"):
        await billing.create_checkout(user, "not-a-number")


@pytest.mark.asyncio
async def test_stripe_failures_become_billing_errors(session, billing_settings, user, monkeypatch):
    basic = await _seed(session, billing_settings)

    def failing_create(**kwargs):
        raise stripe.StripeError("card network down")

    monkeypatch.setattr(stripe.Customer, "create", failing_create)

    with pytest.raises(BillingError):
        await StripeBilling(session, billing_settings).create_checkout(user, basic.id)


@pytest.mark.asyncio
async def test_portal_requires_customer(session, billing_settings, user):
    with pytest.raises(NotFound):
        await StripeBilling(session, billing_settings).create_portal(user)


@pytest.mark.asyncio
async def test_portal_uses_stored_customer(session, billing_settings, user, monkeypatch):
    basic = await _seed(session, billing_settings)
    session.add(
        Subscription(
            user_id=user.id,
            tier_id=basic.id,
            status="active",
            stripe_customer_id="cus_saved",
            stripe_subscription_id="sub_saved",
        )
    )
    await session.flush()
    captured = {}

    def fake_portal(**kwargs):
        captured.update(kwargs)
        return {"url": "https://billing.stripe.test/p"}

    monkeypatch.setattr(stripe.billing_portal.Session, "create", fake_portal)

    result = await StripeBilling(session, billing_settings).create_portal(user)

    assert result == {"url": "https://billing.stripe.test/p"}
    assert captured["customer"] == "cus_saved"
    assert captured["return_url"] == "https://app.example.com/protected"


@pytest.mark.asyncio
async def test_details_without_subscription(session, billing_settings, user):
    details = await StripeBilling(session, billing_settings).subscription_details(user)

    assert details["status"] == "no_subscription"
    assert details["plan"] is None


@pytest.mark.asyncio
async def test_details_fall_back_to_local_state(session, billing_settings, user, monkeypatch):
    basic = await _seed(session, billing_settings)
    end = utc_now() + timedelta(days=5)
    session.add(
        Subscription(
            user_id=user.id,
            tier_id=basic.id,
            status="active",
            stripe_subscription_id="sub_live",
            current_period_end=end,
            cancel_at_period_end=True,
        )
    )
    await session.flush()

    def failing_retrieve(*args, **kwargs):
        raise stripe.StripeError("timeout")

    monkeypatch.setattr(stripe.Subscription, "retrieve", failing_retrieve)

    details = await StripeBilling(session, billing_settings).subscription_details(user)

    assert details["status"] == "active"
    assert details["plan"] == "Basic"
    assert details["cancelAtPeriodEnd"] is True
    assert details["currentPeriodEnd"] is not None


@pytest.mark.asyncio
async def test_webhook_checkout_completed_records_subscription(session, billing_settings, user, monkeypatch):
    basic = await _seed(session, billing_settings)
    event = {
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "metadata": {"userId": str(user.id), "tierId": str(basic.id)},
                "subscription": "sub_new",
                "customer": "cus_9",
            }
        },
    }
    monkeypatch.setattr(stripe.Webhook, "construct_event", lambda payload, sig, secret: event)
    monkeypatch.setattr(
        stripe.Subscription,
        "retrieve",
        lambda subscription_id, api_key=None: {
            "id": subscription_id,
            "status": "active",
            "cancel_at_period_end": False,
            "items": {"data": [{"current_period_start": 1_900_000_000, "current_period_end": 1_902_592_000}]},
        },
    )

    result = await StripeBilling(session, billing_settings).handle_webhook(b"{}", "t=1,v1=abc")

    assert result == {"received": True}
    stored = (
        await session.execute(select(Subscription).where(Subscription.stripe_subscription_id == "sub_new"))
    ).scalar_one()
    assert stored.user_id == user.id
    assert stored.tier_id == basic.id
    assert stored.stripe_customer_id == "cus_9"
    assert stored.current_period_end is not None


@pytest.mark.asyncio
async def test_webhook_checkout_without_metadata_is_rejected(session, billing_settings, monkeypatch):
    event = {"type": "checkout.session.completed", "data": {"object": {"metadata": {}}}}
    monkeypatch.setattr(stripe.Webhook, "construct_event", lambda payload, sig, secret: event)

    with pytest.raises(WebhookError) as excinfo:
        await StripeBilling(session, billing_settings).handle_webhook(b"{}", "sig")
    assert excinfo.value.status_code == 400


@pytest.mark.asyncio
async def test_webhook_subscription_deleted_marks_canceled(session, billing_settings, user, monkeypatch):
    basic = await _seed(session, billing_settings)
    session.add(
        Subscription(user_id=user.id, tier_id=basic.id, status="active", stripe_subscription_id="sub_gone")
    )
    await session.flush()
    event = {"type": "customer.subscription.deleted", "data": {"object": {"id": "sub_gone"}}}
    monkeypatch.setattr(stripe.Webhook, "construct_event", lambda payload, sig, secret: event)

    await StripeBilling(session, billing_settings).handle_webhook(b"{}", "sig")

    stored = (
        await session.execute(select(Subscription).where(Subscription.stripe_subscription_id == "sub_gone"))
    ).scalar_one()
    assert stored.status == "canceled"


@pytest.mark.asyncio
async def test_webhook_verifies_real_signature(session, billing_settings):
    payload = json.dumps({"id": "evt_2", "object": "event", "type": "invoice.paid", "data": {"object": {}}})

    result = await StripeBilling(session, billing_settings).handle_webhook(payload.encode(), _sign(payload))

    assert result == {"received": True}


@pytest.mark.asyncio
async def test_webhook_signature_errors(session, billing_settings):
    billing = StripeBilling(session, billing_settings)
    payload = json.dumps({"id": "evt_3", "object": "event", "type": "invoice.paid", "data": {"object": {}}})

    with pytest.raises(WebhookError, match="Missing stripe-signature header"):
        await billing.handle_webhook(payload.encode(), None)
    with pytest.raises(WebhookError, match="Invalid signature"):
        await billing.handle_webhook(payload.encode(), _sign(payload, secret="whsec_other"))


@pytest.mark.asyncio
async def test_webhook_without_secret_is_server_error(session, settings):
    with pytest.raises(ServiceError) as excinfo:
        await StripeBilling(session, settings).handle_webhook(b"{}", "sig")
    assert excinfo.value.status_code == 500
