"""Bearer-token verification against the identity provider and local user upsert."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.config import AuthSettings, SheetSpeakSettings, get_settings, read_secret
from sheetspeak.db.models.core import User
from sheetspeak.logging import logger
from sheetspeak.services.exceptions import NotAuthenticated, ServiceError
from sheetspeak.services.subscriptions import SubscriptionService
from sheetspeak.utils.datetime import utc_now


@dataclass(slots=True)
class Identity:
    auth_id: str
    email: str | None = None


class TokenVerifier:
    def __init__(self, http_client: httpx.AsyncClient, settings: AuthSettings) -> None:
        self._client = http_client
        self._settings = settings

    async def verify(self, token: str | None) -> Identity:
        if not token:
            raise NotAuthenticated("Unauthorized")
        if self._settings.base_url is None:
            raise ServiceError("Authentication provider is not configured")

        headers = {"Authorization": f"Bearer {token}"}
        anon_key = read_secret(self._settings.anon_key)
        if anon_key:
            headers["apikey"] = anon_key
        url = f"{str(self._settings.base_url).rstrip('/')}/auth/v1/user"
        try:
            response = await self._client.get(
                url, headers=headers, timeout=self._settings.request_timeout_seconds
            )
        except httpx.RequestError as exc:
            raise ServiceError(f"Authentication provider unreachable: {exc}") from exc

        if response.status_code in (401, 403):
            raise NotAuthenticated("Unauthorized")
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ServiceError(f"Authentication failed ({response.status_code})") from exc

        data = response.json()
        auth_id = data.get("id")
        if not auth_id:
            raise NotAuthenticated("Unauthorized")
        return Identity(auth_id=str(auth_id), email=data.get("email"))


class AccountService:
    def __init__(self, session: AsyncSession, settings: SheetSpeakSettings | None = None) -> None:
        self.session = session
        self.settings = settings or get_settings()

    async def resolve(self, identity: Identity) -> User:
        """Return the local user for ``identity``, creating it with the default tier."""

        stmt = select(User).where(User.auth_id == identity.auth_id)
        result = await self.session.execute(stmt)
        user = result.scalar_one_or_none()
        if user is None:
            user = User(auth_id=identity.auth_id, email=identity.email)
            self.session.add(user)
            await self.session.flush()
            await SubscriptionService(self.session, self.settings).ensure_default_subscription(user)
            logger.info("user_created", user_id=user.id)
        elif identity.email and user.email != identity.email:
            user.email = identity.email

        user.last_seen_at = utc_now()
        await self.session.flush()
        return user


__all__ = ["AccountService", "Identity", "TokenVerifier"]
