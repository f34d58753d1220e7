"""
Object storage gateway.

The rest of the application talks to blob storage only through the
``ObjectStorage`` protocol. ``S3ObjectStorage`` is the production
implementation for any S3-compatible endpoint (AWS, MinIO, R2).

boto3 is synchronous; every call is pushed to a worker thread so the
event loop is never blocked on network I/O.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta
from typing import Any, Protocol

import boto3
import structlog
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from portfolio.config.settings import Settings
from portfolio.db.base import utcnow

_log = structlog.get_logger(__name__)

KEY_PREFIX = "uploads"


class StorageError(Exception):
    """Raised when the object store rejects or fails an operation."""

    def __init__(self, operation: str, key: str | None, reason: str) -> None:
        super().__init__(f"{operation} failed for {key or '<new object>'}: {reason}")
        self.operation = operation
        self.key = key
        self.reason = reason


class ObjectStorage(Protocol):
    @property
    def bucket(self) -> str: ...

    async def put(
        self,
        data: bytes,
        content_type: str,
        metadata: dict[str, str] | None = None,
        suffix: str = "",
    ) -> str: ...

    async def delete(self, key: str) -> None: ...

    async def presign_get(self, key: str, ttl: timedelta) -> str: ...

    def public_url(self, key: str) -> str: ...


def generate_key(suffix: str = "") -> str:
    """Return a fresh ``uploads/<hex><ext>`` key."""
    return f"{KEY_PREFIX}/{uuid.uuid4().hex}{suffix.lower()}"


class S3ObjectStorage:
    """ObjectStorage backed by boto3."""

    def __init__(self, settings: Settings, client: Any | None = None) -> None:
        self._settings = settings
        self._bucket = settings.s3_bucket
        endpoint = settings.s3_endpoint_url
        self._endpoint = str(endpoint).rstrip("/") if endpoint else None
        self._client = client or self._build_client(settings)

    @staticmethod
    def _build_client(settings: Settings) -> Any:
        access_key = settings.s3_access_key_id
        secret_key = settings.s3_secret_access_key
        return boto3.client(
            "s3",
            endpoint_url=str(settings.s3_endpoint_url) if settings.s3_endpoint_url else None,
            region_name=settings.s3_region,
            aws_access_key_id=access_key.get_secret_value() if access_key else None,
            aws_secret_access_key=secret_key.get_secret_value() if secret_key else None,
            config=BotoConfig(
                signature_version="s3v4",
                s3={"addressing_style": "path" if settings.s3_force_path_style else "auto"},
            ),
        )

    @property
    def bucket(self) -> str:
        return self._bucket

    async def put(
        self,
        data: bytes,
        content_type: str,
        metadata: dict[str, str] | None = None,
        suffix: str = "",
    ) -> str:
        key = generate_key(suffix)
        meta = {"upload-time": utcnow().isoformat(), **(metadata or {})}
        try:
            await asyncio.to_thread(
                self._client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata=meta,
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError("put", None, str(exc)) from exc
        _log.debug("object_stored", key=key, size=len(data))
        return key

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError("delete", key, str(exc)) from exc
        _log.debug("object_deleted", key=key)

    async def presign_get(self, key: str, ttl: timedelta) -> str:
        try:
            return await asyncio.to_thread(
                self._client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=int(ttl.total_seconds()),
            )
        except (BotoCoreError, ClientError) as exc:
            raise StorageError("presign", key, str(exc)) from exc

    def public_url(self, key: str) -> str:
        if self._endpoint:
            return f"{self._endpoint}/{self._bucket}/{key}"
        return f"https://{self._bucket}.s3.{self._settings.s3_region}.amazonaws.com/{key}"
