"""Subscription status, tiers and Stripe checkout/portal sessions."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.api.deps import get_app_settings, get_current_user, get_session
from sheetspeak.config import SheetSpeakSettings
from sheetspeak.db.models.core import User
from sheetspeak.domain.models import CheckoutRequest, TierModel
from sheetspeak.services.billing import StripeBilling
from sheetspeak.services.subscriptions import SubscriptionService

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


def get_subscriptions(
    session: AsyncSession = Depends(get_session),
    settings: SheetSpeakSettings = Depends(get_app_settings),
) -> SubscriptionService:
    return SubscriptionService(session, settings)


def get_billing(
    session: AsyncSession = Depends(get_session),
    settings: SheetSpeakSettings = Depends(get_app_settings),
    subscriptions: SubscriptionService = Depends(get_subscriptions),
) -> StripeBilling:
    return StripeBilling(session, settings, subscriptions=subscriptions)


@router.get("/check")
async def check_subscription(
    user: User = Depends(get_current_user),
    subscriptions: SubscriptionService = Depends(get_subscriptions),
) -> dict:
    return {"subscribed": await subscriptions.is_subscribed(user)}


@router.get("/details")
async def subscription_details(
    user: User = Depends(get_current_user),
    billing: StripeBilling = Depends(get_billing),
) -> dict:
    return await billing.subscription_details(user)


@router.get("/tiers")
async def list_tiers(subscriptions: SubscriptionService = Depends(get_subscriptions)) -> dict:
    tiers = await subscriptions.list_tiers()
    return {"tiers": [TierModel.model_validate(tier).model_dump() for tier in tiers]}


@router.post("/checkout")
async def create_checkout(
    body: CheckoutRequest,
    request: Request,
    user: User = Depends(get_current_user),
    billing: StripeBilling = Depends(get_billing),
) -> dict:
    return await billing.create_checkout(user, body.tier_id, request.headers.get("origin"))


@router.post("/portal")
async def create_portal(
    request: Request,
    user: User = Depends(get_current_user),
    billing: StripeBilling = Depends(get_billing),
) -> dict:
    return await billing.create_portal(user, request.headers.get("origin"))


__all__ = ["get_billing", "get_subscriptions", "router"]
