"""S3-compatible object storage for extracted text and generated audio."""

from __future__ import annotations

import asyncio
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from sheetspeak.config import StorageSettings, read_secret
from sheetspeak.logging import logger
from sheetspeak.services.exceptions import NotFound, StorageError

MISSING_KEY_CODES = {"NoSuchKey", "404", "NotFound"}


class ObjectStorage:
    def __init__(self, settings: StorageSettings, client: Any | None = None) -> None:
        self._settings = settings
        self._client = client

    @property
    def bucket(self) -> str:
        return self._settings.bucket

    @property
    def client(self):
        if self._client is None:
            session = boto3.Session(
                aws_access_key_id=read_secret(self._settings.access_key_id),
                aws_secret_access_key=read_secret(self._settings.secret_access_key),
                region_name=self._settings.region,
            )
            self._client = session.client("s3", endpoint_url=self._settings.endpoint_url)
        return self._client

    async def put(self, key: str, body: bytes, content_type: str) -> str:
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=body,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("storage_upload_failed", key=key, error=str(exc))
            raise StorageError(f"Upload error: {exc}") from exc
        logger.info("storage_object_stored", key=key, size=len(body), content_type=content_type)
        return key

    async def get(self, key: str) -> bytes:
        try:
            response = await asyncio.to_thread(self.client.get_object, Bucket=self.bucket, Key=key)
            body = response["Body"]
            try:
                return await asyncio.to_thread(body.read)
            finally:
                body.close()
        except ClientError as exc:
            code = str(exc.response.get("Error", {}).get("Code", ""))
            if code in MISSING_KEY_CODES:
                raise NotFound("File not found in storage") from exc
            raise StorageError(f"Download error: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageError(f"Download error: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            logger.warning("storage_delete_failed", key=key, error=str(exc))
            raise StorageError(f"Delete error: {exc}") from exc
        logger.info("storage_object_deleted", key=key)

    async def presigned_url(self, key: str, expires_in: int | None = None) -> str:
        try:
            return await asyncio.to_thread(
                self.client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=expires_in or self._settings.presigned_url_ttl_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Could not sign URL: {exc}") from exc


__all__ = ["ObjectStorage"]
