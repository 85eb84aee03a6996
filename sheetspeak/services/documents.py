"""Document upload, text extraction and file bookkeeping."""

from __future__ import annotations

import asyncio
import io
import os
import uuid
from dataclasses import dataclass, field

import httpx
from pypdf import PdfReader
from pypdf.errors import PdfReadError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.config import OcrSettings, read_secret
from sheetspeak.db.models.core import StoredFile, User
from sheetspeak.logging import logger
from sheetspeak.services.exceptions import (
    ExtractionError,
    InvalidRequest,
    NotFound,
    ServiceError,
)
from sheetspeak.services.storage import ObjectStorage

SUPPORTED_EXTENSIONS = ("pdf", "txt")


@dataclass(slots=True)
class ExtractedText:
    text: str
    original_name: str

    @property
    def character_count(self) -> int:
        return len(self.text)


@dataclass(slots=True)
class UploadOutcome:
    file_ids: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def file_extension(filename: str) -> str:
    return os.path.splitext(filename or "")[1].lstrip(".").lower()


def base_name(filename: str) -> str:
    return os.path.splitext(os.path.basename(filename or ""))[0] or "unnamed"


async def read_bounded(upload, limit: int) -> bytes:
    """Read at most ``limit + 1`` bytes so oversized uploads are detected without buffering them."""

    return await upload.read(limit + 1)


async def remove_stored_file(session: AsyncSession, storage: ObjectStorage, record: StoredFile) -> None:
    """Delete the record's objects first, then the row."""

    for key in dict.fromkeys((record.file_path, record.audio_file_path)):
        if key:
            await storage.delete(key)
    await session.delete(record)
    await session.flush()


class TextExtractor:
    """Turns uploaded PDF/TXT bytes into plain text."""

    def __init__(self, settings: OcrSettings, http_client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        self._client = http_client

    @property
    def max_upload_bytes(self) -> int:
        return self._settings.max_upload_bytes

    async def extract(self, filename: str, data: bytes) -> ExtractedText:
        ext = file_extension(filename)
        if ext not in SUPPORTED_EXTENSIONS:
            raise InvalidRequest(f"Unsupported file type: {ext or 'unknown'}")
        if len(data) > self._settings.max_upload_bytes:
            raise InvalidRequest(f"File too large: {filename}")

        if ext == "pdf":
            if self._settings.provider == "ocr_space":
                text = await self._ocr_space(filename, data)
            else:
                text = await asyncio.to_thread(self._read_pdf, data)
        else:
            text = data.decode("utf-8", errors="replace")

        if not text.strip():
            raise ExtractionError("Empty text after conversion")
        return ExtractedText(text=text, original_name=filename)

    @staticmethod
    def _read_pdf(data: bytes) -> str:
        try:
            reader = PdfReader(io.BytesIO(data))
            pages = [page.extract_text() or "" for page in reader.pages]
        except PdfReadError as exc:
            raise ExtractionError(f"Could not read PDF: {exc}") from exc
        return "\n".join(page.strip() for page in pages if page.strip())

    async def _ocr_space(self, filename: str, data: bytes) -> str:
        api_key = read_secret(self._settings.api_key)
        if not api_key:
            raise ServiceError("Server misconfiguration")
        if self._client is None:
            raise ServiceError("OCR client is not configured")

        try:
            response = await self._client.post(
                str(self._settings.api_url),
                data={
                    "apikey": api_key,
                    "language": self._settings.language,
                    "isOverlayRequired": "false",
                },
                files={"file": (filename, data, "application/pdf")},
                timeout=self._settings.request_timeout_seconds,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            detail = exc.response.text[:500] if exc.response is not None else str(exc)
            raise ExtractionError(f"OCR.space {exc.response.status_code}: {detail}") from exc
        except httpx.RequestError as exc:
            raise ExtractionError(f"OCR.space request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise ExtractionError("Invalid OCR.space response") from exc
        if not isinstance(payload, dict):
            raise ExtractionError("Invalid OCR.space response")

        results = payload.get("ParsedResults") or []
        first = results[0] if isinstance(results, list) and results else None
        text = first.get("ParsedText") if isinstance(first, dict) else None
        if not isinstance(text, str) or not text:
            raise ExtractionError("No text returned from OCR.space")
        return text


class DocumentService:
    def __init__(
        self,
        session: AsyncSession,
        storage: ObjectStorage,
        extractor: TextExtractor,
    ) -> None:
        self.session = session
        self.storage = storage
        self.extractor = extractor

    async def upload(self, user: User, files: list[tuple[str, bytes]]) -> UploadOutcome:
        """Extract, store and record every file; per-file failures land in ``errors``."""

        if not files:
            raise InvalidRequest("No files provided")

        outcome = UploadOutcome()
        for filename, data in files:
            try:
                extracted = await self.extractor.extract(filename, data)
            except InvalidRequest as exc:
                outcome.errors.append(exc.message)
                continue
            except ServiceError as exc:
                outcome.errors.append(f"Failed to convert {filename}: {exc.message}")
                continue

            file_key = str(uuid.uuid4())
            path = f"{user.auth_id}/{base_name(filename)}-{file_key}.txt"
            try:
                await self.storage.put(path, extracted.text.encode("utf-8"), "text/plain")
            except ServiceError as exc:
                outcome.errors.append(f"Save error for {filename}: {exc.message}")
                continue

            record = StoredFile(
                user_id=user.id,
                file_key=file_key,
                file_path=path,
                file_type="text/plain",
                original_name=filename,
                character_count=extracted.character_count,
                conversion_status="completed",
            )
            self.session.add(record)
            await self.session.flush()
            outcome.file_ids.append(file_key)
            logger.info(
                "document_uploaded",
                user_id=user.id,
                file_id=file_key,
                characters=extracted.character_count,
            )
        return outcome

    async def list_files(self, user: User) -> list[StoredFile]:
        stmt = (
            select(StoredFile)
            .where(StoredFile.user_id == user.id)
            .order_by(StoredFile.created_at.desc(), StoredFile.id.desc())
        )
        result = await self.session.execute(stmt)
        return list(result.scalars())

    async def get_owned(self, user: User, file_key: str) -> StoredFile:
        stmt = select(StoredFile).where(
            StoredFile.file_key == file_key,
            StoredFile.user_id == user.id,
        )
        result = await self.session.execute(stmt)
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFound("File not found or access denied")
        return record

    async def read_text(self, user: User, file_key: str) -> tuple[StoredFile, str]:
        record = await self.get_owned(user, file_key)
        if not record.file_path or not record.file_type.startswith("text/"):
            raise InvalidRequest("File has no text content")
        data = await self.storage.get(record.file_path)
        return record, data.decode("utf-8", errors="replace")

    async def delete(self, user: User, file_key: str) -> None:
        record = await self.get_owned(user, file_key)
        await remove_stored_file(self.session, self.storage, record)
        logger.info("document_deleted", user_id=user.id, file_id=file_key)


__all__ = [
    "DocumentService",
    "ExtractedText",
    "SUPPORTED_EXTENSIONS",
    "TextExtractor",
    "UploadOutcome",
    "base_name",
    "file_extension",
    "read_bounded",
    "remove_stored_file",
]
