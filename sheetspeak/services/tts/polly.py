"""Amazon Polly adapter built on boto3."""

from __future__ import annotations

import asyncio
from typing import Any, Callable

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from sheetspeak.config import AwsSettings, read_secret
from sheetspeak.logging import logger
from sheetspeak.services.exceptions import PermissionDenied, ProviderError
from sheetspeak.services.tts.base import ProviderCredentials, SynthesisRequest, SynthesisResult

FREE_VOICES = frozenset(
    {"Joanna", "Matthew", "Salli", "Justin", "Joey", "Kendra", "Kimberly", "Kevin"}
)
NEURAL_SUFFIXES = ("-neural", "_neural", "-Neural", "_Neural")

ClientFactory = Callable[[ProviderCredentials | None], Any]


def split_voice(voice_id: str) -> tuple[str, str]:
    """Return ``(polly_voice_id, engine)``; a ``-neural`` suffix selects the neural engine."""

    for suffix in NEURAL_SUFFIXES:
        if voice_id.endswith(suffix):
            return voice_id[: -len(suffix)], "neural"
    return voice_id, "neural" if "neural" in voice_id.lower() else "standard"


def is_free_voice(voice_id: str | None) -> bool:
    if not voice_id:
        return True
    return split_voice(voice_id)[0] in FREE_VOICES


class PollyProvider:
    name = "polly"

    def __init__(self, settings: AwsSettings, client_factory: ClientFactory | None = None) -> None:
        self._settings = settings
        self._client_factory = client_factory or self._build_client
        self._default_client: Any | None = None

    @property
    def default_voice(self) -> str:
        return self._settings.default_polly_voice

    def resolve_voice(self, voice_id: str | None) -> str:
        return (voice_id or "").strip() or self.default_voice

    def _build_client(self, credentials: ProviderCredentials | None):
        if credentials is not None and credentials.is_custom:
            session = boto3.Session(
                aws_access_key_id=credentials.api_key,
                aws_secret_access_key=credentials.secret_key,
                region_name=credentials.region or self._settings.region,
            )
            return session.client("polly")
        session = boto3.Session(
            aws_access_key_id=read_secret(self._settings.access_key_id),
            aws_secret_access_key=read_secret(self._settings.secret_access_key),
            region_name=self._settings.region,
        )
        return session.client("polly")

    def _client(self, credentials: ProviderCredentials | None):
        if credentials is not None and credentials.is_custom:
            return self._client_factory(credentials)
        if self._default_client is None:
            self._default_client = self._client_factory(None)
        return self._default_client

    def ensure_voice_allowed(self, voice_id: str, credentials: ProviderCredentials | None) -> None:
        """Premium voices require the user's own AWS credentials."""

        if is_free_voice(voice_id):
            return
        if credentials is not None and credentials.is_custom:
            return
        raise PermissionDenied(
            "This voice requires custom AWS credentials",
            voiceId=voice_id,
        )

    async def synthesize(self, request: SynthesisRequest) -> SynthesisResult:
        voice = self.resolve_voice(request.voice_id)
        self.ensure_voice_allowed(voice, request.credentials)
        polly_voice, engine = split_voice(voice)
        engine = request.options.get("engine") or engine
        text_type = "ssml" if "<speak>" in request.text else "text"
        client = self._client(request.credentials)

        try:
            response = await asyncio.to_thread(
                client.synthesize_speech,
                Text=request.text,
                VoiceId=polly_voice,
                OutputFormat="mp3",
                Engine=engine,
                TextType=text_type,
            )
            stream = response.get("AudioStream")
            if stream is None:
                raise ProviderError("No audio stream received from Polly", provider=self.name)
            try:
                audio = await asyncio.to_thread(stream.read)
            finally:
                stream.close()
        except (BotoCoreError, ClientError) as exc:
            logger.warning("polly_synthesis_failed", voice_id=voice, error=str(exc))
            raise ProviderError(f"Polly synthesis failed: {exc}", provider=self.name) from exc

        if not audio:
            raise ProviderError("No audio data received from Polly", provider=self.name)

        logger.info(
            "polly_synthesis_completed",
            voice_id=polly_voice,
            engine=engine,
            characters=request.characters,
            bytes=len(audio),
        )
        return SynthesisResult(
            audio=audio,
            voice_id=voice,
            provider=self.name,
            characters=request.characters,
            content_type=response.get("ContentType") or "audio/mpeg",
        )

    async def list_voices(self, credentials: ProviderCredentials | None = None) -> dict[str, list[dict]]:
        """Voices grouped by language name; premium ones only with custom credentials."""

        include_premium = credentials is not None and credentials.is_custom
        client = self._client(credentials)
        voices: list[dict] = []
        next_token: str | None = None
        try:
            while True:
                kwargs = {"NextToken": next_token} if next_token else {}
                response = await asyncio.to_thread(client.describe_voices, **kwargs)
                voices.extend(response.get("Voices") or [])
                next_token = response.get("NextToken")
                if not next_token:
                    break
        except (BotoCoreError, ClientError) as exc:
            raise ProviderError(f"Failed to fetch voices: {exc}", provider=self.name) from exc

        grouped: dict[str, list[dict]] = {}
        for voice in voices:
            voice_id = voice.get("Id")
            is_free = voice_id in FREE_VOICES
            if not include_premium and not is_free:
                continue
            language = voice.get("LanguageName") or "Other"
            engines = voice.get("SupportedEngines") or []
            grouped.setdefault(language, []).append(
                {
                    "id": voice_id,
                    "name": voice.get("Name"),
                    "gender": voice.get("Gender"),
                    "languageCode": voice.get("LanguageCode"),
                    "languageName": voice.get("LanguageName"),
                    "engine": engines,
                    "isFree": is_free,
                    "isNeural": "neural" in engines,
                }
            )
        return grouped


__all__ = ["FREE_VOICES", "PollyProvider", "is_free_voice", "split_voice"]
