"""
Blob storage for scan images.

Objects are written once under a key that embeds a generated unique id and
are read back through a public base URL or a presigned GET URL.
"""

import asyncio
from typing import Any, Protocol

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from mediquest.config.config import Settings, get_settings
from mediquest.config.logging_config import get_logger

logger = get_logger(__name__)


class BlobStoreError(Exception):
    """An upload to blob storage failed."""


class BlobStore(Protocol):
    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        """Store data under key and return a retrievable URL."""
        ...


def scan_image_key(patient_id: str, scan_id: str, variant: str, extension: str) -> str:
    return f"patients/{patient_id}/scan_images/{scan_id}_{variant}.{extension}"


class S3BlobStore:
    """BlobStore backed by S3 or an S3-compatible service."""

    def __init__(self, settings: Settings | None = None, s3_client: Any | None = None):
        self.settings = settings or get_settings()
        self._s3 = s3_client

    @property
    def s3(self) -> Any:
        if self._s3 is None:
            self._s3 = boto3.client(
                "s3",
                region_name=self.settings.blob_region,
                endpoint_url=self.settings.blob_endpoint_url,
            )
        return self._s3

    def _upload(self, key: str, data: bytes, content_type: str) -> str:
        bucket = self.settings.blob_bucket
        try:
            self.s3.put_object(
                Bucket=bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
            if self.settings.blob_public_base_url:
                return f"{self.settings.blob_public_base_url.rstrip('/')}/{key}"
            return self.s3.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=self.settings.blob_url_expiry_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Error uploading to blob storage", key=key, error=str(e))
            raise BlobStoreError(f"Upload failed for {key}: {e}") from e

    async def upload(self, key: str, data: bytes, content_type: str) -> str:
        url = await asyncio.to_thread(self._upload, key, data, content_type)
        logger.info("Blob uploaded", key=key, size_bytes=len(data), content_type=content_type)
        return url
