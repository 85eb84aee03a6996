"""Domain-specific exceptions."""

from __future__ import annotations

from typing import Any


class ServiceError(Exception):
    """Base error; ``status_code`` is what the HTTP layer answers with."""

    status_code = 500

    def __init__(self, message: str | None = None, **details: Any) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details


class NotAuthenticated(ServiceError):
    status_code = 401


class PermissionDenied(ServiceError):
    status_code = 403


class NotFound(ServiceError):
    status_code = 404


class InvalidRequest(ServiceError):
    status_code = 400


class InvalidCharacterCount(InvalidRequest):
    pass


class WebhookError(InvalidRequest):
    pass


class QuotaExceeded(ServiceError):
    status_code = 429


class RateLimitExceeded(ServiceError):
    status_code = 429

    def __init__(
        self,
        message: str | None = None,
        *,
        headers: dict[str, str] | None = None,
        **details: Any,
    ) -> None:
        super().__init__(message, **details)
        self.headers = headers or {}


class SubscriptionError(ServiceError):
    pass


class ProviderError(ServiceError):
    """A TTS vendor call failed or returned unusable audio."""


class StorageError(ServiceError):
    pass


class ExtractionError(ServiceError):
    pass


class BillingError(ServiceError):
    pass


__all__ = [
    "BillingError",
    "ExtractionError",
    "InvalidCharacterCount",
    "InvalidRequest",
    "NotAuthenticated",
    "NotFound",
    "PermissionDenied",
    "ProviderError",
    "QuotaExceeded",
    "RateLimitExceeded",
    "ServiceError",
    "StorageError",
    "SubscriptionError",
    "WebhookError",
]
