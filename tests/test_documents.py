"""Text extraction, storage and file bookkeeping."""

from __future__ import annotations

import io

import httpx
import pytest
from botocore.exceptions import ClientError
from pypdf import PdfWriter
from sqlalchemy import select

from sheetspeak.config import OcrSettings, StorageSettings
from sheetspeak.db.models.core import StoredFile, User
from sheetspeak.services.documents import (
    DocumentService,
    TextExtractor,
    base_name,
    file_extension,
    read_bounded,
)
from sheetspeak.services.exceptions import (
    ExtractionError,
    InvalidRequest,
    NotFound,
    ServiceError,
    StorageError,
)
from sheetspeak.services.storage import ObjectStorage


class StubS3Client:
    def __init__(self) -> None:
        self.objects = {}

    def put_object(self, *, Bucket, Key, Body, ContentType):
        self.objects[Key] = Body

    def get_object(self, *, Bucket, Key):
        if Key not in self.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key])}

    def delete_object(self, *, Bucket, Key):
        self.objects.pop(Key, None)

    def generate_presigned_url(self, operation, Params, ExpiresIn):
        return f"https://s3.test/{Params['Bucket']}/{Params['Key']}?ttl={ExpiresIn}"


class FailingStorage:
    async def put(self, key, body, content_type):
        raise StorageError("Upload error: bucket gone")


def _blank_pdf() -> bytes:
    writer = PdfWriter()
    writer.add_blank_page(width=72, height=72)
    buffer = io.BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


def _documents(session, client: StubS3Client | None = None) -> DocumentService:
    storage = ObjectStorage(StorageSettings(bucket="test-bucket"), client=client or StubS3Client())
    return DocumentService(session, storage, TextExtractor(OcrSettings()))


def test_filename_helpers():
    assert file_extension("Report.PDF") == "pdf"
    assert file_extension("README") == ""
    assert base_name("dir/notes.final.txt") == "notes.final"
    assert base_name(".txt") == ".txt"


@pytest.mark.asyncio
async def test_extract_plain_text():
    extracted = await TextExtractor(OcrSettings()).extract("notes.txt", "Hello there".encode())

    assert extracted.text == "Hello there"
    assert extracted.character_count == 11


@pytest.mark.asyncio
async def test_extract_rejects_unsupported_and_empty():
    extractor = TextExtractor(OcrSettings())

    with pytest.raises(InvalidRequest, match="Unsupported file type: docx"):
        await extractor.extract("memo.docx", b"data")
    with pytest.raises(ExtractionError, match="Empty text after conversion"):
        await extractor.extract("blank.txt", b"   \n")
    with pytest.raises(ExtractionError, match="Empty text after conversion"):
        await extractor.extract("blank.pdf", _blank_pdf())


@pytest.mark.asyncio
async def test_extract_rejects_oversized_upload():
    extractor = TextExtractor(OcrSettings(max_upload_bytes=1024))

    with pytest.raises(InvalidRequest, match="File too large"):
        await extractor.extract("big.txt", b"x" * 2048)


@pytest.mark.asyncio
async def test_extract_pdf_through_ocr_space():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = request.content
        return httpx.Response(200, json={"ParsedResults": [{"ParsedText": "Scanned words"}]})

    settings = OcrSettings(provider="ocr_space", api_key="ocr-key")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        extracted = await TextExtractor(settings, client).extract("scan.pdf", b"%PDF-1.4 fake")

    assert extracted.text == "Scanned words"
    assert seen["url"] == "https://api.ocr.space/parse/image"
    assert b"ocr-key" in seen["body"]
    assert b"scan.pdf" in seen["body"]


@pytest.mark.asyncio
async def test_ocr_space_failures():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ParsedResults": []})

    settings = OcrSettings(provider="ocr_space", api_key="ocr-key")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        with pytest.raises(ExtractionError, match="No text returned"):
            await TextExtractor(settings, client).extract("scan.pdf", b"%PDF")

    with pytest.raises(ServiceError, match="Server misconfiguration"):
        await TextExtractor(OcrSettings(provider="ocr_space")).extract("scan.pdf", b"%PDF")


@pytest.mark.asyncio
async def test_ocr_space_unparseable_responses():
    bodies = iter([
        httpx.Response(200, text="<html>gateway</html>"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"ParsedResults": ["junk"]}),
    ])

    def handler(request: httpx.Request) -> httpx.Response:
        return next(bodies)

    settings = OcrSettings(provider="ocr_space", api_key="ocr-key")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        extractor = TextExtractor(settings, client)
        with pytest.raises(ExtractionError, match="Invalid OCR.space response"):
            await extractor.extract("scan.pdf", b"%PDF")
        with pytest.raises(ExtractionError, match="Invalid OCR.space response"):
            await extractor.extract("scan.pdf", b"%PDF")
        with pytest.raises(ExtractionError, match="No text returned"):
            await extractor.extract("scan.pdf", b"%PDF")


@pytest.mark.asyncio
async def test_upload_keeps_good_files_when_ocr_returns_html(session, user):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    storage = ObjectStorage(StorageSettings(bucket="test-bucket"), client=StubS3Client())
    settings = OcrSettings(provider="ocr_space", api_key="ocr-key")
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        documents = DocumentService(session, storage, TextExtractor(settings, client))
        outcome = await documents.upload(user, [("good.txt", b"hello"), ("scan.pdf", b"%PDF")])

    assert len(outcome.file_ids) == 1
    assert outcome.errors == ["Failed to convert scan.pdf: Invalid OCR.space response"]


@pytest.mark.asyncio
async def test_read_bounded_stops_past_the_limit():
    class RecordingUpload:
        def __init__(self, data: bytes) -> None:
            self._buffer = io.BytesIO(data)
            self.requested = []

        async def read(self, size: int = -1) -> bytes:
            self.requested.append(size)
            return self._buffer.read(size)

    big = RecordingUpload(b"x" * 5000)
    small = RecordingUpload(b"tiny")

    assert len(await read_bounded(big, 1024)) == 1025
    assert big.requested == [1025]
    assert await read_bounded(small, 1024) == b"tiny"


@pytest.mark.asyncio
async def test_upload_stores_text_and_reports_errors(session, user):
    client = StubS3Client()
    documents = _documents(session, client)

    outcome = await documents.upload(
        user,
        [("chapter one.txt", b"Once upon a time"), ("slides.pptx", b"binary")],
    )

    assert len(outcome.file_ids) == 1
    assert outcome.errors == ["Unsupported file type: pptx"]
    record = (await session.execute(select(StoredFile))).scalar_one()
    assert record.file_key == outcome.file_ids[0]
    assert record.file_path == f"{user.auth_id}/chapter one-{record.file_key}.txt"
    assert record.file_type == "text/plain"
    assert record.conversion_status == "completed"
    assert record.character_count == len("Once upon a time")
    assert client.objects[record.file_path] == b"Once upon a time"


@pytest.mark.asyncio
async def test_upload_collects_storage_failures(session, user):
    documents = DocumentService(session, FailingStorage(), TextExtractor(OcrSettings()))

    outcome = await documents.upload(user, [("a.txt", b"text")])

    assert outcome.file_ids == []
    assert outcome.errors[0].startswith("Save error for a.txt")


@pytest.mark.asyncio
async def test_upload_requires_files(session, user):
    with pytest.raises(InvalidRequest, match="No files provided"):
        await _documents(session).upload(user, [])


@pytest.mark.asyncio
async def test_read_list_and_delete_are_owner_scoped(session, user):
    client = StubS3Client()
    documents = _documents(session, client)
    outcome = await documents.upload(user, [("first.txt", b"one"), ("second.txt", b"two")])
    stranger = User(auth_id="auth-stranger")
    session.add(stranger)
    await session.flush()

    record, text = await documents.read_text(user, outcome.file_ids[0])
    assert text == "one"
    assert record.original_name == "first.txt"
    assert len(await documents.list_files(user)) == 2

    with pytest.raises(NotFound, match="File not found or access denied"):
        await documents.read_text(stranger, outcome.file_ids[0])

    await documents.delete(user, outcome.file_ids[0])

    assert record.file_path not in client.objects
    remaining = await documents.list_files(user)
    assert [item.file_key for item in remaining] == [outcome.file_ids[1]]


@pytest.mark.asyncio
async def test_storage_maps_missing_keys_and_signs_urls():
    storage = ObjectStorage(StorageSettings(bucket="b"), client=StubS3Client())

    with pytest.raises(NotFound):
        await storage.get("missing.txt")
    await storage.put("present.txt", b"data", "text/plain")
    assert await storage.get("present.txt") == b"data"
    assert await storage.presigned_url("present.txt", 120) == "https://s3.test/b/present.txt?ttl=120"
