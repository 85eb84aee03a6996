from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from sheetspeak.api.routers.subscriptions import get_billing
from sheetspeak.services.billing import StripeBilling

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(request: Request, billing: StripeBilling = Depends(get_billing)) -> dict:
    # Signature verification needs the untouched body.
    payload = await request.body()
    return await billing.handle_webhook(payload, request.headers.get("stripe-signature"))


__all__ = ["router"]
