"""Stripe checkout, billing portal and webhook handling."""

from __future__ import annotations

import asyncio
from typing import Any

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.config import SheetSpeakSettings, get_settings, read_secret
from sheetspeak.db.models.core import User
from sheetspeak.logging import logger
from sheetspeak.services.exceptions import (
    BillingError,
    InvalidRequest,
    NotFound,
    ServiceError,
    WebhookError,
)
from sheetspeak.services.subscriptions import StripeSubscriptionState, SubscriptionService
from sheetspeak.utils.datetime import ensure_utc, from_timestamp

_MISSING = object()


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def stripe_field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a Stripe object or plain dict."""

    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        value = getattr(obj, key, _MISSING)
        if value is _MISSING:
            return default
    return default if value is None else value


def subscription_state(subscription: Any) -> StripeSubscriptionState:
    """Build the mirrored state; period bounds moved onto items in newer API versions."""

    period_start = stripe_field(subscription, "current_period_start")
    period_end = stripe_field(subscription, "current_period_end")
    if period_start is None or period_end is None:
        items = stripe_field(stripe_field(subscription, "items"), "data", [])
        first_item = items[0] if items else None
        period_start = period_start or stripe_field(first_item, "current_period_start")
        period_end = period_end or stripe_field(first_item, "current_period_end")

    customer = stripe_field(subscription, "customer")
    if customer is not None and not isinstance(customer, str):
        customer = stripe_field(customer, "id")
    return StripeSubscriptionState(
        subscription_id=stripe_field(subscription, "id"),
        status=stripe_field(subscription, "status", "incomplete"),
        current_period_start=from_timestamp(period_start),
        current_period_end=from_timestamp(period_end),
        cancel_at_period_end=bool(stripe_field(subscription, "cancel_at_period_end", False)),
        customer_id=customer,
    )


class StripeBilling:
    def __init__(
        self,
        session: AsyncSession,
        settings: SheetSpeakSettings | None = None,
        *,
        subscriptions: SubscriptionService | None = None,
    ) -> None:
        self.session = session
        self.settings = settings or get_settings()
        self.subscriptions = subscriptions or SubscriptionService(session, self.settings)

    @property
    def _api_key(self) -> str:
        api_key = read_secret(self.settings.stripe.secret_key)
        if not api_key:
            raise BillingError("Stripe is not configured")
        return api_key

    def _origin(self, origin: str | None) -> str:
        return (origin or self.settings.app_origin).rstrip("/")

    async def _call(self, operation: str, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, api_key=self._api_key, **kwargs)
        except stripe.StripeError as exc:
            logger.warning("stripe_call_failed", operation=operation, error=str(exc))
            raise BillingError(f"Stripe {operation} failed") from exc

    async def create_checkout(self, user: User, tier_id: Any, origin: str | None = None) -> dict[str, str]:
        if tier_id in (None, ""):
            raise InvalidRequest("Tier ID is required")
        try:
            tier_pk = int(tier_id)
        except (TypeError, ValueError):
            raise InvalidRequest("Invalid subscription tier") from None
        tier = await self.subscriptions.get_purchasable_tier(tier_pk)

        customer_id = await self.subscriptions.get_customer_id(user)
        if not customer_id:
            customer = await self._call(
                "customer_create",
                stripe.Customer.create,
                email=user.email,
                metadata={"userId": str(user.id)},
            )
            customer_id = stripe_field(customer, "id")

        base = self._origin(origin)
        stripe_settings = self.settings.stripe
        product = {"name": f"{stripe_settings.product_prefix} {tier.name} Plan"}
        if tier.description:
            product["description"] = tier.description
        checkout = await self._call(
            "checkout_create",
            stripe.checkout.Session.create,
            customer=customer_id,
            line_items=[
                {
                    "price_data": {
                        "currency": stripe_settings.currency,
                        "product_data": product,
                        "unit_amount": tier.monthly_price,
                        "recurring": {"interval": "month"},
                    },
                    "quantity": 1,
                }
            ],
            metadata={"userId": str(user.id), "tierId": str(tier.id)},
            mode="subscription",
            success_url=f"{base}/protected/subscription?success=true",
            cancel_url=f"{base}/protected/subscription?canceled=true",
        )
        logger.info("checkout_session_created", user_id=user.id, tier_id=tier.id)
        return {
            "checkoutUrl": stripe_field(checkout, "url"),
            "sessionId": stripe_field(checkout, "id"),
        }

    async def create_portal(self, user: User, origin: str | None = None) -> dict[str, str]:
        customer_id = await self.subscriptions.get_customer_id(user)
        if not customer_id:
            raise NotFound("No billing account found")
        portal = await self._call(
            "portal_create",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=f"{self._origin(origin)}/protected",
        )
        return {"url": stripe_field(portal, "url")}

    async def subscription_details(self, user: User) -> dict[str, Any]:
        """Latest paid subscription, refreshed from Stripe while it is live."""

        subscription = await self.subscriptions.get_latest_paid_subscription(user)
        if subscription is None:
            return {
                "status": "no_subscription",
                "plan": None,
                "currentPeriodEnd": None,
                "cancelAtPeriodEnd": False,
            }

        plan = subscription.tier.name if subscription.tier else None
        if subscription.status in ("active", "trialing", "past_due"):
            try:
                remote = await self._call(
                    "subscription_retrieve",
                    stripe.Subscription.retrieve,
                    subscription.stripe_subscription_id,
                )
            except BillingError:
                logger.info("subscription_details_fallback", subscription_id=subscription.id)
            else:
                state = subscription_state(remote)
                return {
                    "status": state.status,
                    "plan": plan,
                    "currentPeriodEnd": _iso(state.current_period_end),
                    "cancelAtPeriodEnd": state.cancel_at_period_end,
                }

        return {
            "status": subscription.status,
            "plan": plan,
            "currentPeriodEnd": _iso(ensure_utc(subscription.current_period_end)),
            "cancelAtPeriodEnd": subscription.cancel_at_period_end,
        }

    def construct_event(self, payload: bytes, signature: str | None) -> Any:
        secret = read_secret(self.settings.stripe.webhook_secret)
        if not secret:
            raise ServiceError("Webhook secret is not configured")
        if not signature:
            raise WebhookError("Missing stripe-signature header")
        try:
            return stripe.Webhook.construct_event(payload, signature, secret)
        except ValueError as exc:
            raise WebhookError("Invalid payload") from exc
        except stripe.SignatureVerificationError as exc:
            raise WebhookError("Invalid signature") from exc

    async def handle_webhook(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        event = self.construct_event(payload, signature)
        event_type = stripe_field(event, "type")
        obj = stripe_field(stripe_field(event, "data"), "object")
        logger.info("stripe_webhook_received", event_type=event_type, event_id=stripe_field(event, "id"))

        if event_type == "checkout.session.completed":
            await self._checkout_completed(obj)
        elif event_type == "customer.subscription.updated":
            await self.subscriptions.apply_stripe_update(subscription_state(obj))
        elif event_type == "customer.subscription.deleted":
            await self.subscriptions.mark_canceled(stripe_field(obj, "id"))
        return {"received": True}

    async def _checkout_completed(self, checkout: Any) -> None:
        metadata = stripe_field(checkout, "metadata", {})
        user_id = stripe_field(metadata, "userId")
        tier_id = stripe_field(metadata, "tierId")
        subscription_id = stripe_field(checkout, "subscription")
        if not user_id or not tier_id or not subscription_id:
            raise WebhookError("Missing metadata or subscription id")
        if not isinstance(subscription_id, str):
            subscription_id = stripe_field(subscription_id, "id")
        try:
            user_pk, tier_pk = int(user_id), int(tier_id)
        except (TypeError, ValueError):
            raise WebhookError("Malformed checkout metadata") from None

        subscription = await self._call(
            "subscription_retrieve", stripe.Subscription.retrieve, subscription_id
        )
        state = subscription_state(subscription)
        state.customer_id = state.customer_id or stripe_field(checkout, "customer")
        await self.subscriptions.record_checkout(user_id=user_pk, tier_id=tier_pk, state=state)


__all__ = ["StripeBilling", "stripe_field", "subscription_state"]
