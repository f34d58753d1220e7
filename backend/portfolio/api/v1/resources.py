"""
Resource endpoints.

Reads are public; writes require ``resources:*`` permissions. Reading a
single resource bumps its view count and downloading bumps its download
count, both off the request path.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response

from portfolio.api.deps import (
    AppSettings,
    Counters,
    DbSession,
    Storage,
    require_any_permission,
    require_permission,
)
from portfolio.db.models.resource import ResourceType
from portfolio.schemas.resource import (
    DownloadResponse,
    ResourceCreate,
    ResourceListResponse,
    ResourceOut,
    ResourceStats,
    ResourceUpdate,
)
from portfolio.services.resources import ResourceService

router = APIRouter(prefix="/resources", tags=["resources"])


@router.get("", response_model=ResourceListResponse, summary="List resources")
async def list_resources(
    db: DbSession,
    storage: Storage,
    settings: AppSettings,
    type: Annotated[ResourceType | None, Query()] = None,
    category: Annotated[str | None, Query(max_length=100)] = None,
    public: Annotated[bool, Query(description="Only public, active resources")] = False,
    search: Annotated[str | None, Query(max_length=100)] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
) -> ResourceListResponse:
    service = ResourceService(db, storage, settings)
    resources, total = await service.list_page(
        type=type,
        category=category,
        public_only=public,
        search=search,
        page=page,
        page_size=page_size,
    )
    return ResourceListResponse(
        items=[ResourceOut.from_resource(r, service.lookahead) for r in resources],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/stats", response_model=ResourceStats, summary="Resource counts per type")
async def resource_stats(db: DbSession, storage: Storage, settings: AppSettings) -> ResourceStats:
    return await ResourceService(db, storage, settings).stats()


@router.get("/{resource_id}", response_model=ResourceOut, summary="Get a resource")
async def get_resource(
    resource_id: str,
    db: DbSession,
    storage: Storage,
    settings: AppSettings,
    counters: Counters,
) -> ResourceOut:
    service = ResourceService(db, storage, settings, counters)
    resource = await service.get(resource_id)
    return ResourceOut.from_resource(resource, service.lookahead)


@router.get(
    "/{resource_id}/download",
    response_model=DownloadResponse,
    summary="Get a usable download URL for a resource's file",
)
async def download_resource(
    resource_id: str,
    db: DbSession,
    storage: Storage,
    settings: AppSettings,
    counters: Counters,
) -> DownloadResponse:
    url, expires_at = await ResourceService(db, storage, settings, counters).download(resource_id)
    return DownloadResponse(resource_id=resource_id, url=url, expires_at=expires_at)


@router.post(
    "",
    response_model=ResourceOut,
    status_code=201,
    summary="Create a resource around an existing upload",
    dependencies=[Depends(require_any_permission(["resources:create", "uploads:create"]))],
)
async def create_resource(
    body: ResourceCreate, db: DbSession, storage: Storage, settings: AppSettings
) -> ResourceOut:
    service = ResourceService(db, storage, settings)
    resource = await service.create(body)
    return ResourceOut.from_resource(resource, service.lookahead)


@router.patch(
    "/{resource_id}",
    response_model=ResourceOut,
    summary="Update resource metadata",
    dependencies=[Depends(require_permission("resources", "update"))],
)
async def update_resource(
    resource_id: str,
    body: ResourceUpdate,
    db: DbSession,
    storage: Storage,
    settings: AppSettings,
) -> ResourceOut:
    service = ResourceService(db, storage, settings)
    resource = await service.update(resource_id, body)
    return ResourceOut.from_resource(resource, service.lookahead)


@router.delete(
    "/{resource_id}",
    status_code=204,
    response_class=Response,
    summary="Delete a resource; its upload is kept",
    dependencies=[Depends(require_permission("resources", "delete"))],
)
async def delete_resource(
    resource_id: str, db: DbSession, storage: Storage, settings: AppSettings
) -> None:
    await ResourceService(db, storage, settings).delete(resource_id)
