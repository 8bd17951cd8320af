"""S3 object storage for product, category, brand and tag images.

Only presigned URLs and keys leave this module; the catalog stores the
resulting public URL string.
"""

import asyncio
import re
import uuid
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from fastapi import Request
from libs.common.config import get_settings
from libs.common.errors import ExternalServiceError, ValidationError
from libs.common.logging import get_logger

logger = get_logger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")
MANAGED_FOLDERS = ("products", "categories", "brands", "tags")


def sanitize_filename(filename: str) -> str:
    name = _UNSAFE.sub("-", filename.strip()).strip("-.")
    return name[:120] or "file"


def check_managed_key(key: str) -> str:
    """Reject keys outside the folders this service writes to."""
    folder, _, rest = key.partition("/")
    if folder not in MANAGED_FOLDERS or not rest or ".." in key:
        raise ValidationError("Key is not a managed image key", field="key")
    return key


class ObjectStorage:
    def __init__(self, bucket: Optional[str] = None, client=None):
        settings = get_settings()
        self.bucket = bucket or settings.S3_BUCKET_NAME
        self.region = settings.AWS_REGION
        self.expiry = settings.S3_PRESIGN_EXPIRY_SECONDS
        self.s3_client = client or boto3.client(
            "s3",
            aws_access_key_id=settings.AWS_ACCESS_KEY_ID,
            aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY,
            region_name=self.region,
        )

    def build_key(self, folder: str, filename: str) -> str:
        return f"{folder}/{uuid.uuid4().hex}-{sanitize_filename(filename)}"

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def presign_upload(self, key: str, content_type: str) -> str:
        try:
            return self.s3_client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=self.expiry,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("Failed to presign upload for %s: %s", key, e)
            raise ExternalServiceError("storage", str(e)) from e

    def presign_download(self, key: str) -> str:
        try:
            return self.s3_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.expiry,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("Failed to presign download for %s: %s", key, e)
            raise ExternalServiceError("storage", str(e)) from e

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(
                self.s3_client.delete_object, Bucket=self.bucket, Key=key
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("Failed to delete %s: %s", key, e)
            raise ExternalServiceError("storage", str(e)) from e


def get_object_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage
