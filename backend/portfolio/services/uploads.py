"""
Upload registry.

Owns the Upload rows and keeps them consistent with the object store:
a blob is never left behind for an Upload row that failed to persist.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from urllib.parse import quote

import structlog
from sqlalchemy import exists, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio.config.settings import Settings
from portfolio.core.errors import (
    ConflictError,
    ErrorCode,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from portfolio.db.base import utcnow
from portfolio.db.models.resource import Resource
from portfolio.db.models.upload import Upload
from portfolio.schemas.upload import CleanupReport, UploadSummary
from portfolio.services import content_types
from portfolio.services.storage import ObjectStorage, StorageError

_log = structlog.get_logger(__name__)


class UploadService:
    """
    Usage:
        service = UploadService(db, storage, settings)
        upload = await service.create(raw, "banner.jpg", "image/jpeg")
    """

    def __init__(self, db: AsyncSession, storage: ObjectStorage, settings: Settings) -> None:
        self._db = db
        self._storage = storage
        self._settings = settings

    @property
    def url_ttl(self) -> timedelta:
        return timedelta(hours=self._settings.upload_url_ttl_hours)

    async def _discard(self, key: str) -> None:
        """Best-effort removal of a blob whose Upload row will not exist."""
        try:
            await self._storage.delete(key)
            _log.info("orphan_blob_removed", s3_key=key)
        except StorageError as exc:
            _log.error("orphan_blob_cleanup_failed", s3_key=key, error=str(exc))

    async def issue_url(self, key: str, ttl: timedelta | None = None) -> tuple[str, datetime | None]:
        """Return ``(url, expires_at)`` for a stored object; public URLs never expire."""
        if self._settings.storage_public_urls:
            return self._storage.public_url(key), None
        ttl = ttl or self.url_ttl
        url = await self._storage.presign_get(key, ttl)
        return url, utcnow() + ttl

    def check_size(self, size: int) -> None:
        limit = self._settings.max_upload_size_bytes
        if size > limit:
            raise ValidationError(
                f"File exceeds maximum allowed size of {self._settings.max_upload_size_mb}MB",
                detail={"size_bytes": size, "limit_bytes": limit},
                code=ErrorCode.UPLOAD_TOO_LARGE,
            )

    async def create(
        self,
        data: bytes,
        original_name: str,
        content_type: str | None,
        declared_size: int | None = None,
    ) -> Upload:
        """
        Validate, store and register a new upload.

        Raises:
            ValidationError: File too large or content type not allowed.
            UpstreamError: Object store or database failure.
        """
        size = len(data)
        self.check_size(max(size, declared_size or 0))

        resolved = content_types.resolve(content_type, original_name)
        if resolved not in self._settings.allowed_mime_types:
            raise ValidationError(
                f"File type {resolved} is not allowed",
                detail={"received": resolved, "allowed": self._settings.allowed_mime_types},
                code=ErrorCode.UPLOAD_MIME_REJECTED,
            )

        try:
            key = await self._storage.put(
                data,
                resolved,
                metadata={"original-filename": quote(original_name)},
                suffix=content_types.suffix_of(original_name),
            )
        except StorageError as exc:
            _log.error("upload_store_failed", original_name=original_name, error=str(exc))
            raise UpstreamError(ErrorCode.UPLOAD_STORAGE_FAILED, "Failed to store file") from exc

        log = _log.bind(s3_key=key)

        try:
            url, expires_at = await self.issue_url(key)
        except StorageError as exc:
            log.error("upload_presign_failed", error=str(exc))
            await self._discard(key)
            raise UpstreamError(
                ErrorCode.UPLOAD_STORAGE_FAILED, "Failed to generate file URL"
            ) from exc

        upload = Upload(
            file_name=key.rsplit("/", 1)[-1],
            original_name=original_name,
            file_size=size,
            content_type=resolved,
            s3_key=key,
            s3_bucket=self._storage.bucket,
            url=url,
            expires_at=expires_at,
            is_active=True,
        )
        # A failed insert unwinds only this savepoint; the caller's work survives
        try:
            async with self._db.begin_nested():
                self._db.add(upload)
                await self._db.flush()
        except SQLAlchemyError as exc:
            log.error("upload_persist_failed", error=str(exc))
            await self._discard(key)
            raise UpstreamError(
                ErrorCode.UPLOAD_PERSIST_FAILED, "Failed to save upload record"
            ) from exc

        log.info(
            "upload_created",
            upload_id=upload.id,
            content_type=resolved,
            file_size=size,
        )
        return upload

    async def get(self, upload_id: str) -> Upload:
        upload = await self._db.get(Upload, upload_id)
        if upload is None:
            raise NotFoundError("Upload", upload_id, code=ErrorCode.UPLOAD_NOT_FOUND)
        return upload

    async def list_page(self, page: int = 1, page_size: int = 20) -> tuple[list[Upload], int]:
        total = await self._db.scalar(select(func.count()).select_from(Upload))
        result = await self._db.execute(
            select(Upload)
            .order_by(Upload.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total or 0

    async def summary(self) -> UploadSummary:
        result = await self._db.execute(
            select(Upload.content_type, func.count(), func.coalesce(func.sum(Upload.file_size), 0))
            .where(Upload.is_active.is_(True))
            .group_by(Upload.content_type)
        )
        counts = {"images": 0, "documents": 0, "videos": 0, "others": 0}
        total_files = 0
        total_size = 0
        for content_type, count, size in result.all():
            counts[content_types.category_of(content_type)] += count
            total_files += count
            total_size += int(size)

        return UploadSummary(
            total_files=total_files,
            total_size=total_size,
            total_size_formatted=content_types.format_size(total_size),
            **counts,
        )

    async def delete(self, upload_id: str) -> None:
        """
        Delete the blob, then the row.

        Raises:
            ConflictError: A Resource still references the upload.
        """
        upload = await self.get(upload_id)
        references = await self._db.scalar(
            select(func.count()).select_from(Resource).where(Resource.upload_id == upload_id)
        )
        if references:
            raise ConflictError(
                ErrorCode.UPLOAD_IN_USE,
                f"Upload is referenced by {references} resource(s) and cannot be deleted.",
            )

        try:
            await self._storage.delete(upload.s3_key)
        except StorageError as exc:
            _log.error("upload_blob_delete_failed", upload_id=upload_id, error=str(exc))
            raise UpstreamError(
                ErrorCode.UPLOAD_STORAGE_FAILED, "Failed to delete file from storage"
            ) from exc

        await self._db.delete(upload)
        await self._db.flush()
        _log.info("upload_deleted", upload_id=upload_id, s3_key=upload.s3_key)

    async def cleanup_stale(
        self, now: datetime | None = None, stop: asyncio.Event | None = None
    ) -> CleanupReport:
        """
        Retire uploads that expired more than the retention window ago and
        that no Resource references: delete the blob, mark the row inactive.

        Each upload is committed on its own.
        """
        now = now or utcnow()
        cutoff = now - timedelta(days=self._settings.upload_retention_days)
        referenced = exists().where(Resource.upload_id == Upload.id)
        result = await self._db.execute(
            select(Upload.id, Upload.s3_key).where(
                Upload.is_active.is_(True),
                Upload.expires_at.is_not(None),
                Upload.expires_at <= cutoff,
                ~referenced,
            )
        )
        stale = result.all()
        report = CleanupReport(scanned=len(stale))

        for upload_id, s3_key in stale:
            if stop is not None and stop.is_set():
                break
            try:
                await self._storage.delete(s3_key)
            except StorageError as exc:
                _log.warning("stale_blob_delete_failed", upload_id=upload_id, error=str(exc))
            try:
                upload = await self._db.get(Upload, upload_id)
                if upload is not None:
                    upload.is_active = False
                await self._db.commit()
                report.deactivated += 1
            except SQLAlchemyError as exc:
                await self._db.rollback()
                report.failed += 1
                _log.error("stale_upload_deactivate_failed", upload_id=upload_id, error=str(exc))

        _log.info(
            "stale_upload_cleanup_finished",
            scanned=report.scanned,
            deactivated=report.deactivated,
            failed=report.failed,
        )
        return report
