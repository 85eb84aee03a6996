from __future__ import annotations

import httpx
import pytest
from sqlalchemy import select

from sheetspeak.config import AuthSettings
from sheetspeak.db.models.core import Subscription
from sheetspeak.services.auth import AccountService, Identity, TokenVerifier
from sheetspeak.services.exceptions import NotAuthenticated, ServiceError


def _verifier(handler) -> tuple[httpx.AsyncClient, TokenVerifier]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    settings = AuthSettings(base_url="https://auth.example.com", anon_key="anon-key")
    return client, TokenVerifier(client, settings)


@pytest.mark.asyncio
async def test_verify_returns_identity():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["apikey"] = request.headers["apikey"]
        return httpx.Response(200, json={"id": "uuid-1", "email": "a@example.com"})

    client, verifier = _verifier(handler)
    async with client:
        identity = await verifier.verify("token-123")

    assert identity == Identity(auth_id="uuid-1", email="a@example.com")
    assert seen == {
        "url": "https://auth.example.com/auth/v1/user",
        "auth": "Bearer token-123",
        "apikey": "anon-key",
    }


@pytest.mark.asyncio
async def test_verify_rejects_missing_and_invalid_tokens():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"msg": "invalid JWT"})

    client, verifier = _verifier(handler)
    async with client:
        with pytest.raises(NotAuthenticated):
            await verifier.verify(None)
        with pytest.raises(NotAuthenticated):
            await verifier.verify("expired")


@pytest.mark.asyncio
async def test_verify_provider_outage_is_server_error():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="maintenance")

    client, verifier = _verifier(handler)
    async with client:
        with pytest.raises(ServiceError) as excinfo:
            await verifier.verify("token")
    assert excinfo.value.status_code == 500


@pytest.mark.asyncio
async def test_resolve_creates_user_with_default_subscription(seeded, settings):
    accounts = AccountService(seeded, settings)

    user = await accounts.resolve(Identity(auth_id="uuid-9", email="new@example.com"))
    again = await accounts.resolve(Identity(auth_id="uuid-9", email="changed@example.com"))

    assert again.id == user.id
    assert again.email == "changed@example.com"
    assert again.last_seen_at is not None
    subscriptions = (await seeded.execute(select(Subscription))).scalars().all()
    assert len(subscriptions) == 1
    assert subscriptions[0].user_id == user.id
