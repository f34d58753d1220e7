"""
Resource registry and presigned-URL refresh.

Resources are metadata records wrapped around one Upload each. Deleting a
Resource never touches its Upload or blob.

Refresh passes are best-effort batches: every upload is refreshed and
committed on its own, and one failure never stops the rest.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio.config.settings import Settings
from portfolio.core.errors import ErrorCode, NotFoundError, UpstreamError
from portfolio.core.metrics import url_refresh_total
from portfolio.db.base import utcnow
from portfolio.db.models.resource import Resource, ResourceType
from portfolio.db.models.upload import Upload
from portfolio.schemas.resource import ResourceCreate, ResourceStats, ResourceUpdate
from portfolio.schemas.scheduler import RefreshItemResult, RefreshReport
from portfolio.services.counters import CounterDispatcher, CounterKind
from portfolio.services.storage import ObjectStorage, StorageError

_log = structlog.get_logger(__name__)


class ResourceService:
    def __init__(
        self,
        db: AsyncSession,
        storage: ObjectStorage,
        settings: Settings,
        counters: CounterDispatcher | None = None,
    ) -> None:
        self._db = db
        self._storage = storage
        self._settings = settings
        self._counters = counters

    @property
    def lookahead(self) -> timedelta:
        return timedelta(hours=self._settings.refresh_lookahead_hours)

    @property
    def url_ttl(self) -> timedelta:
        return timedelta(hours=self._settings.upload_url_ttl_hours)

    def _bump(self, resource_id: str, kind: CounterKind) -> None:
        if self._counters is not None:
            self._counters.increment(resource_id, kind)

    # ── CRUD ────────────────────────────────────────────────────────────── #

    async def create(self, body: ResourceCreate) -> Resource:
        """
        Raises:
            NotFoundError: ``UPLOAD_NOT_FOUND`` if the referenced upload does not exist.
        """
        upload = await self._db.get(Upload, body.upload_id)
        if upload is None:
            raise NotFoundError("Upload", body.upload_id, code=ErrorCode.UPLOAD_NOT_FOUND)

        resource = Resource(
            name=body.name,
            description=body.description,
            type=body.type,
            category=body.category,
            tags=body.tags,
            alt=body.alt,
            upload_id=upload.id,
            is_public=True if body.is_public is None else body.is_public,
            is_active=True if body.is_active is None else body.is_active,
            view_count=0,
            download_count=0,
        )
        resource.upload = upload
        self._db.add(resource)
        await self._db.flush()
        _log.info(
            "resource_created",
            resource_id=resource.id,
            upload_id=upload.id,
            type=resource.type.value,
        )
        return resource

    async def load(self, resource_id: str) -> Resource:
        resource = await self._db.get(Resource, resource_id)
        if resource is None:
            raise NotFoundError("Resource", resource_id, code=ErrorCode.RESOURCE_NOT_FOUND)
        return resource

    async def get(self, resource_id: str) -> Resource:
        """Return the resource and schedule a view-count increment."""
        resource = await self.load(resource_id)
        self._bump(resource.id, CounterKind.VIEW)
        return resource

    async def list_page(
        self,
        *,
        type: ResourceType | None = None,
        category: str | None = None,
        public_only: bool = False,
        search: str | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[Resource], int]:
        query = select(Resource)
        if type is not None:
            query = query.where(Resource.type == type)
        if category:
            query = query.where(Resource.category == category)
        if public_only:
            query = query.where(Resource.is_public.is_(True), Resource.is_active.is_(True))
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    Resource.name.ilike(pattern),
                    Resource.description.ilike(pattern),
                    Resource.tags.ilike(pattern),
                )
            )

        total = await self._db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self._db.execute(
            query.order_by(Resource.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total or 0

    async def update(self, resource_id: str, body: ResourceUpdate) -> Resource:
        """Apply only the fields present in ``body``."""
        resource = await self.load(resource_id)
        changes: dict[str, Any] = {
            field: value
            for field, value in body.model_dump(exclude_unset=True).items()
            if value is not None
        }
        for field, value in changes.items():
            setattr(resource, field, value)
        if changes:
            await self._db.flush()
        _log.info("resource_updated", resource_id=resource.id, fields=sorted(changes))
        return resource

    async def delete(self, resource_id: str) -> None:
        resource = await self.load(resource_id)
        await self._db.delete(resource)
        await self._db.flush()
        _log.info("resource_deleted", resource_id=resource_id, upload_id=resource.upload_id)

    # ── Downloads & stats ───────────────────────────────────────────────── #

    async def download(self, resource_id: str) -> tuple[str, datetime | None]:
        """
        Return a usable URL for the resource's file and schedule a
        download-count increment.

        A stale stored URL is not handed out: a short-lived one is presigned
        instead. The stored URL is left for the refresh scheduler.
        """
        resource = await self.load(resource_id)
        upload = resource.upload
        url, expires_at = upload.url, upload.expires_at

        if upload.is_expired():
            ttl = timedelta(minutes=self._settings.download_url_ttl_minutes)
            try:
                url = await self._storage.presign_get(upload.s3_key, ttl)
            except StorageError as exc:
                _log.error("download_url_failed", resource_id=resource_id, error=str(exc))
                raise UpstreamError(
                    ErrorCode.RESOURCE_URL_FAILED, "Failed to generate download URL"
                ) from exc
            expires_at = utcnow() + ttl

        self._bump(resource.id, CounterKind.DOWNLOAD)
        return url, expires_at

    async def stats(self) -> ResourceStats:
        result = await self._db.execute(
            select(Resource.type, func.count()).group_by(Resource.type)
        )
        by_type = {member.value: 0 for member in ResourceType}
        for resource_type, count in result.all():
            by_type[ResourceType(resource_type).value] = count
        return ResourceStats(total=sum(by_type.values()), by_type=by_type)

    # ── URL refresh ─────────────────────────────────────────────────────── #

    async def refresh_expiring(
        self, now: datetime | None = None, stop: asyncio.Event | None = None
    ) -> RefreshReport:
        """
        Re-presign URLs of referenced uploads that expire within the
        look-ahead window but have not expired yet.
        """
        now = now or utcnow()
        rows = await self._candidates(
            Upload.expires_at <= now + self.lookahead,
            Upload.expires_at > now,
        )
        return await self._refresh(rows, "expiring", stop)

    async def refresh_expired(
        self, now: datetime | None = None, stop: asyncio.Event | None = None
    ) -> RefreshReport:
        """Re-presign URLs of referenced uploads whose URL already expired."""
        now = now or utcnow()
        rows = await self._candidates(Upload.expires_at <= now)
        return await self._refresh(rows, "expired", stop)

    async def _candidates(self, *conditions: Any) -> list[tuple[str, str, str]]:
        result = await self._db.execute(
            select(Upload.id, Upload.s3_key, Resource.name)
            .join(Resource, Resource.upload_id == Upload.id)
            .where(Upload.expires_at.is_not(None), *conditions)
            .order_by(Upload.expires_at, Resource.created_at)
        )
        seen: set[str] = set()
        rows: list[tuple[str, str, str]] = []
        for upload_id, s3_key, resource_name in result.all():
            if upload_id in seen:
                continue
            seen.add(upload_id)
            rows.append((upload_id, s3_key, resource_name))
        return rows

    async def _refresh(
        self,
        rows: list[tuple[str, str, str]],
        window: str,
        stop: asyncio.Event | None,
    ) -> RefreshReport:
        report = RefreshReport(scanned=len(rows))
        for upload_id, s3_key, resource_name in rows:
            if stop is not None and stop.is_set():
                _log.info(
                    "url_refresh_interrupted",
                    window=window,
                    remaining=report.scanned - len(report.items),
                )
                break
            report.record(await self._refresh_one(upload_id, s3_key, resource_name, window))

        _log.info(
            "url_refresh_finished",
            window=window,
            scanned=report.scanned,
            refreshed=report.refreshed,
            failed=report.failed,
        )
        return report

    async def _refresh_one(
        self, upload_id: str, s3_key: str, resource_name: str, window: str
    ) -> RefreshItemResult:
        log = _log.bind(upload_id=upload_id, resource_name=resource_name, window=window)
        try:
            url = await self._storage.presign_get(s3_key, self.url_ttl)
        except StorageError as exc:
            log.warning("url_refresh_failed", stage="presign", error=str(exc))
            url_refresh_total.labels(window=window, status="failed").inc()
            return RefreshItemResult(
                upload_id=upload_id, resource_name=resource_name, ok=False, error=str(exc)
            )

        expires_at = utcnow() + self.url_ttl
        try:
            await self._db.execute(
                update(Upload)
                .where(Upload.id == upload_id)
                .values(url=url, expires_at=expires_at)
                .execution_options(synchronize_session=False)
            )
            await self._db.commit()
        except SQLAlchemyError as exc:
            await self._db.rollback()
            log.warning("url_refresh_failed", stage="persist", error=str(exc))
            url_refresh_total.labels(window=window, status="failed").inc()
            return RefreshItemResult(
                upload_id=upload_id, resource_name=resource_name, ok=False, error=str(exc)
            )

        log.info("url_refreshed", expires_at=expires_at.isoformat())
        url_refresh_total.labels(window=window, status="refreshed").inc()
        return RefreshItemResult(
            upload_id=upload_id, resource_name=resource_name, ok=True, expires_at=expires_at
        )
