"""Document upload, listing, content and deletion."""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from sheetspeak.api.deps import get_current_user, get_extractor, get_session, get_storage
from sheetspeak.db.models.core import User
from sheetspeak.domain.models import FileModel
from sheetspeak.services.documents import DocumentService, TextExtractor, read_bounded
from sheetspeak.services.exceptions import ExtractionError, InvalidRequest, NotFound
from sheetspeak.services.storage import ObjectStorage

router = APIRouter(prefix="/api", tags=["files"])


def get_documents(
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_storage),
    extractor: TextExtractor = Depends(get_extractor),
) -> DocumentService:
    return DocumentService(session, storage, extractor)


@router.get("/files")
async def list_files(
    user: User = Depends(get_current_user),
    documents: DocumentService = Depends(get_documents),
) -> dict:
    records = await documents.list_files(user)
    return {
        "files": [
            FileModel.from_record(record).model_dump(by_alias=True, mode="json")
            for record in records
        ]
    }


@router.post("/files/upload")
async def upload_files(
    files: list[UploadFile] | None = File(default=None),
    user: User = Depends(get_current_user),
    documents: DocumentService = Depends(get_documents),
    extractor: TextExtractor = Depends(get_extractor),
) -> dict:
    limit = extractor.max_upload_bytes
    payload = [
        (upload.filename or "unnamed", await read_bounded(upload, limit)) for upload in files or []
    ]
    outcome = await documents.upload(user, payload)
    if not outcome.file_ids:
        raise ExtractionError("All conversions failed", errors=outcome.errors)

    body: dict = {
        "message": f"{len(outcome.file_ids)} file(s) processed successfully",
        "fileIds": outcome.file_ids,
    }
    if outcome.errors:
        body["errors"] = outcome.errors
    return body


@router.get("/files/{file_id}/content")
async def file_content(
    file_id: str,
    user: User = Depends(get_current_user),
    documents: DocumentService = Depends(get_documents),
) -> dict:
    record, text = await documents.read_text(user, file_id)
    return {"id": record.file_key, "originalName": record.original_name, "content": text}


@router.get("/files/{file_id}/audio")
async def file_audio(
    file_id: str,
    user: User = Depends(get_current_user),
    documents: DocumentService = Depends(get_documents),
    storage: ObjectStorage = Depends(get_storage),
) -> dict:
    record = await documents.get_owned(user, file_id)
    if not record.audio_file_path or record.conversion_status != "completed":
        raise NotFound("Audio not available")
    return {"id": record.file_key, "url": await storage.presigned_url(record.audio_file_path)}


@router.delete("/files/{file_id}")
async def delete_file(
    file_id: str,
    user: User = Depends(get_current_user),
    documents: DocumentService = Depends(get_documents),
) -> dict:
    await documents.delete(user, file_id)
    return {"success": True}


@router.post("/pdf-to-text")
async def pdf_to_text(
    file: UploadFile | None = File(default=None),
    user: User = Depends(get_current_user),
    extractor: TextExtractor = Depends(get_extractor),
) -> dict:
    if file is None:
        raise InvalidRequest("No file provided")
    name = file.filename or "document.pdf"
    extracted = await extractor.extract(name, await read_bounded(file, extractor.max_upload_bytes))
    return {
        "text": extracted.text,
        "characterCount": extracted.character_count,
        "originalName": name,
    }


__all__ = ["router"]
