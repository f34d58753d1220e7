"""Upload Pydantic schemas."""

from __future__ import annotations

from datetime import datetime, timedelta

from pydantic import BaseModel

from portfolio.db.base import as_utc
from portfolio.db.models.upload import Upload


class UploadOut(BaseModel):
    id: str
    file_name: str
    original_name: str
    file_size: int
    content_type: str
    s3_bucket: str
    url: str
    expires_at: datetime | None
    is_active: bool
    is_expired: bool = False
    is_expiring_soon: bool = False
    created_at: datetime

    @classmethod
    def from_upload(cls, upload: Upload, lookahead: timedelta) -> UploadOut:
        return cls(
            id=upload.id,
            file_name=upload.file_name,
            original_name=upload.original_name,
            file_size=upload.file_size,
            content_type=upload.content_type,
            s3_bucket=upload.s3_bucket,
            url=upload.url,
            expires_at=as_utc(upload.expires_at),
            is_active=upload.is_active,
            is_expired=upload.is_expired(),
            is_expiring_soon=upload.is_expiring_soon(lookahead),
            created_at=upload.created_at,
        )


class UploadListResponse(BaseModel):
    items: list[UploadOut]
    total: int
    page: int
    page_size: int


class UploadSummary(BaseModel):
    total_files: int
    total_size: int
    total_size_formatted: str
    images: int
    documents: int
    videos: int
    others: int


class UploadSummaryResponse(UploadListResponse):
    summary: UploadSummary


class CleanupReport(BaseModel):
    scanned: int = 0
    deactivated: int = 0
    failed: int = 0
