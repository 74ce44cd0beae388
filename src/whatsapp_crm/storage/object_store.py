"""
Object Storage

S3-compatible storage for media copied out of the provider.
"""

import logging
from abc import ABC, abstractmethod

import boto3
from botocore.client import BaseClient
from botocore.exceptions import BotoCoreError, ClientError

from basecore.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class ObjectStoreError(Exception):
    """Upload to object storage failed."""


class ObjectStore(ABC):
    """Durable storage addressed by key."""

    @abstractmethod
    def upload(self, key: str, content: bytes, content_type: str) -> str:
        """
        Store bytes under a key.

        Returns:
            Stable public URL of the object

        Raises:
            ObjectStoreError: If the upload fails
        """
        ...


def get_s3_client(settings: Settings) -> BaseClient:
    """Return a configured S3 client (supports S3-compatible endpoints)."""
    return boto3.client(
        "s3",
        region_name=settings.S3_REGION or None,
        aws_access_key_id=settings.AWS_ACCESS_KEY_ID or None,
        aws_secret_access_key=settings.AWS_SECRET_ACCESS_KEY or None,
        endpoint_url=settings.S3_ENDPOINT_URL.rstrip("/") or None,
    )


class S3ObjectStore(ObjectStore):
    """Object store backed by an S3 bucket."""

    def __init__(
        self,
        bucket: str,
        client: BaseClient,
        public_base_url: str | None = None,
        endpoint_url: str | None = None,
        region: str | None = None,
    ):
        self.bucket = bucket
        self.client = client
        self.public_base_url = (public_base_url or "").rstrip("/")
        self.endpoint_url = (endpoint_url or "").rstrip("/")
        self.region = region or "us-east-1"

    def public_url(self, key: str) -> str:
        """Public URL of a stored key."""
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"

    def upload(self, key: str, content: bytes, content_type: str) -> str:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as e:
            raise ObjectStoreError(f"Upload of {key} failed: {e}") from e

        logger.debug("Uploaded object", extra={"bucket": self.bucket, "key": key})
        return self.public_url(key)


def get_object_store(settings: Settings | None = None) -> S3ObjectStore:
    """Build the media object store from settings."""
    settings = settings or get_settings()
    return S3ObjectStore(
        bucket=settings.MEDIA_BUCKET,
        client=get_s3_client(settings),
        public_base_url=settings.MEDIA_PUBLIC_BASE_URL,
        endpoint_url=settings.S3_ENDPOINT_URL,
        region=settings.S3_REGION,
    )
