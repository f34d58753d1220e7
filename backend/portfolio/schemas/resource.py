"""Resource Pydantic schemas."""

from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel, Field

from portfolio.db.models.resource import Resource, ResourceType
from portfolio.schemas.upload import UploadOut


class ResourceCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: str = Field(default="", max_length=5000)
    type: ResourceType
    category: str = Field(default="", max_length=100)
    tags: str = Field(default="", max_length=1000, description="Comma-separated tags")
    upload_id: str = Field(..., min_length=1, max_length=36)
    alt: str = Field(default="", max_length=500)
    is_public: bool | None = None
    is_active: bool | None = None


class ResourceUpdate(BaseModel):
    """Only fields present in the request body are applied."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    type: ResourceType | None = None
    category: str | None = Field(default=None, max_length=100)
    tags: str | None = Field(default=None, max_length=1000)
    alt: str | None = Field(default=None, max_length=500)
    is_public: bool | None = None
    is_active: bool | None = None


class ResourceOut(BaseModel):
    id: str
    name: str
    description: str
    type: ResourceType
    category: str
    tags: list[str]
    alt: str
    is_public: bool
    is_active: bool
    view_count: int
    download_count: int
    upload: UploadOut
    is_expired: bool
    is_expiring_soon: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_resource(cls, resource: Resource, lookahead: timedelta) -> ResourceOut:
        upload = UploadOut.from_upload(resource.upload, lookahead)
        return cls(
            id=resource.id,
            name=resource.name,
            description=resource.description,
            type=resource.type,
            category=resource.category,
            tags=resource.tag_list,
            alt=resource.alt,
            is_public=resource.is_public,
            is_active=resource.is_active,
            view_count=resource.view_count,
            download_count=resource.download_count,
            upload=upload,
            is_expired=upload.is_expired,
            is_expiring_soon=upload.is_expiring_soon,
            created_at=resource.created_at,
            updated_at=resource.updated_at,
        )


class ResourceListResponse(BaseModel):
    items: list[ResourceOut]
    total: int
    page: int
    page_size: int


class DownloadResponse(BaseModel):
    resource_id: str
    url: str
    expires_at: datetime | None


class ResourceStats(BaseModel):
    total: int
    by_type: dict[str, int]
