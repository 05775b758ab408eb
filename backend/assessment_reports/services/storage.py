"""
Artifact storage for rendered report PDFs.

Two interchangeable backends:
- LocalStorageService: files under LOCAL_STORAGE_PATH/<bucket>/<key>, for
  development and tests
- S3StorageService: AWS S3 via boto3, for production

Both expose the same async methods, so the worker and the API don't care
which one they got. boto3 is synchronous, so S3 calls run in a worker
thread via asyncio.to_thread() to keep the event loop free.

Usage:
    storage = get_storage_service()
    await storage.upload_bytes("reports-pdf", "abc/v1.pdf", pdf_bytes, "application/pdf")
    url = await storage.get_file_url("reports-pdf", "abc/v1.pdf", expires_in=3600)
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional, Union

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from assessment_reports.config import settings
from assessment_reports.errors import StorageError

logger = logging.getLogger(__name__)


class LocalStorageService:
    """Saves files to a local directory, laid out like S3 buckets/keys."""

    def __init__(self, base_path: Union[str, Path] = "uploads"):
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path(self, bucket: str, key: str) -> Path:
        path = (self.base_path / bucket / key).resolve()
        if self.base_path.resolve() not in path.parents:
            raise StorageError(f"Invalid storage key: {key}")
        return path

    async def upload_bytes(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        upsert: bool = True,
    ) -> str:
        """Write data at bucket/key. Returns the key.

        With upsert=False an existing object is an error instead of being
        overwritten.
        """
        path = self._path(bucket, key)
        if path.exists() and not upsert:
            raise StorageError(f"Object already exists: {bucket}/{key}")
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        logger.debug("Wrote %d bytes to %s", len(data), path)
        return key

    async def read_bytes(self, bucket: str, key: str) -> bytes:
        path = self._path(bucket, key)
        if not path.exists():
            raise StorageError(f"Object not found: {bucket}/{key}")
        return path.read_bytes()

    async def get_file_url(self, bucket: str, key: str, expires_in: int = 3600) -> str:
        """In local mode this is just the filesystem path."""
        return str(self._path(bucket, key))

    async def delete_file(self, bucket: str, key: str) -> bool:
        path = self._path(bucket, key)
        if path.exists():
            path.unlink()
            return True
        return False

    async def file_exists(self, bucket: str, key: str) -> bool:
        return self._path(bucket, key).exists()


class S3StorageService:
    """Stores files in AWS S3. Used in production."""

    def __init__(self, client=None):
        self.client = client or boto3.client(
            "s3",
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
            region_name=settings.AWS_REGION,
        )

    async def upload_bytes(
        self,
        bucket: str,
        key: str,
        data: bytes,
        content_type: str = "application/octet-stream",
        upsert: bool = True,
    ) -> str:
        # put_object always overwrites; emulate upsert=False with a HEAD first
        if not upsert and await self.file_exists(bucket, key):
            raise StorageError(f"Object already exists: {bucket}/{key}")
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("❌ S3 upload failed for s3://%s/%s: %s", bucket, key, e)
            raise StorageError(f"Upload failed: {e}") from e
        logger.info("📤 Uploaded %d bytes to s3://%s/%s", len(data), bucket, key)
        return key

    async def read_bytes(self, bucket: str, key: str) -> bytes:
        try:
            response = await asyncio.to_thread(self.client.get_object, Bucket=bucket, Key=key)
            return await asyncio.to_thread(response["Body"].read)
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Download failed: {e}") from e

    async def get_file_url(self, bucket: str, key: str, expires_in: int = 3600) -> str:
        """Presigned GET URL, valid for expires_in seconds."""
        try:
            return await asyncio.to_thread(
                self.client.generate_presigned_url,
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=expires_in,
            )
        except (ClientError, BotoCoreError) as e:
            raise StorageError(f"Could not sign URL: {e}") from e

    async def delete_file(self, bucket: str, key: str) -> bool:
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=bucket, Key=key)
        except ClientError as e:
            logger.warning("⚠️ S3 delete failed for s3://%s/%s: %s", bucket, key, e)
            return False
        return True

    async def file_exists(self, bucket: str, key: str) -> bool:
        try:
            await asyncio.to_thread(self.client.head_object, Bucket=bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"Lookup failed: {e}") from e
        return True


StorageService = Union[LocalStorageService, S3StorageService]


def get_storage_service(backend: Optional[str] = None) -> StorageService:
    """Return the storage backend selected by STORAGE_BACKEND."""
    backend = (backend or settings.STORAGE_BACKEND).lower()
    if backend == "s3":
        return S3StorageService()
    return LocalStorageService(settings.LOCAL_STORAGE_PATH)
