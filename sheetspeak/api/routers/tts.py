"""Text-to-speech conversion endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.api.deps import (
    enforce_rate_limit,
    get_analytics,
    get_app_settings,
    get_current_user,
    get_extractor,
    get_registry,
    get_session,
    get_storage,
)
from sheetspeak.config import SheetSpeakSettings
from sheetspeak.db.models.core import User
from sheetspeak.domain.models import ConvertRequest
from sheetspeak.services.analytics import AnalyticsClient
from sheetspeak.services.conversion import ConversionRequest, ConversionService
from sheetspeak.services.documents import DocumentService, TextExtractor
from sheetspeak.services.exceptions import InvalidRequest, PermissionDenied
from sheetspeak.services.storage import ObjectStorage
from sheetspeak.services.subscriptions import SubscriptionService
from sheetspeak.services.tts.base import ProviderCredentials
from sheetspeak.services.tts.registry import ProviderRegistry

router = APIRouter(prefix="/api", tags=["tts"], dependencies=[Depends(enforce_rate_limit)])


class ConversionEndpoint:
    """Shared body of every conversion route; the provider comes from the caller."""

    def __init__(
        self,
        session: AsyncSession = Depends(get_session),
        settings: SheetSpeakSettings = Depends(get_app_settings),
        registry: ProviderRegistry = Depends(get_registry),
        storage: ObjectStorage = Depends(get_storage),
        extractor: TextExtractor = Depends(get_extractor),
        analytics: AnalyticsClient = Depends(get_analytics),
    ) -> None:
        self.session = session
        self.settings = settings
        self.service = ConversionService(
            session, registry, storage, settings, analytics=analytics
        )
        self.documents = DocumentService(session, storage, extractor)

    async def run(self, user: User, provider: str | None, body: ConvertRequest) -> dict:
        text = body.text
        source_file_id = None
        original_filename = body.original_filename
        if body.file_id:
            record, file_text = await self.documents.read_text(user, body.file_id)
            source_file_id = record.id
            original_filename = original_filename or record.original_name
            text = text or file_text

        credentials = ProviderCredentials(
            api_key=body.api_key, secret_key=body.secret_key, region=body.region
        )
        outcome = await self.service.convert(
            user,
            ConversionRequest(
                text=text or "",
                provider=provider,
                voice_id=body.voice_id,
                original_filename=original_filename,
                source_file_id=source_file_id,
                options=body.provider_options(),
                credentials=credentials if credentials.is_custom else None,
            ),
        )
        return outcome.as_dict()


@router.post("/convert-audio/{provider}")
async def convert_with_provider(
    provider: str,
    body: ConvertRequest,
    user: User = Depends(get_current_user),
    endpoint: ConversionEndpoint = Depends(),
) -> dict:
    return await endpoint.run(user, provider, body)


@router.post("/convert-audio")
async def convert_audio(
    body: ConvertRequest,
    user: User = Depends(get_current_user),
    endpoint: ConversionEndpoint = Depends(),
) -> dict:
    if not body.tts_service:
        raise InvalidRequest("TTS service is required")
    return await endpoint.run(user, body.tts_service, body)


@router.post("/tts")
async def synthesize(
    body: ConvertRequest,
    user: User = Depends(get_current_user),
    endpoint: ConversionEndpoint = Depends(),
) -> dict:
    if not body.text or not body.provider:
        raise InvalidRequest("Missing required fields")
    subscriptions = SubscriptionService(endpoint.session, endpoint.settings)
    if not await subscriptions.is_subscribed(user):
        raise PermissionDenied("Subscription required")
    return await endpoint.run(user, body.provider, body)


__all__ = ["router"]
