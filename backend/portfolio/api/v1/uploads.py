"""Upload endpoints: store files in the object store and track their URLs."""

from datetime import timedelta
from typing import Annotated

from fastapi import APIRouter, Depends, File, Query, Request, Response, UploadFile

from portfolio.api.deps import AppSettings, DbSession, Storage, require_permission
from portfolio.api.limits import limiter, upload_limit
from portfolio.schemas.upload import UploadListResponse, UploadOut, UploadSummaryResponse
from portfolio.services.uploads import UploadService

router = APIRouter(prefix="/uploads", tags=["uploads"])


def _lookahead(settings: AppSettings) -> timedelta:
    return timedelta(hours=settings.refresh_lookahead_hours)


@router.post(
    "",
    response_model=UploadOut,
    status_code=201,
    summary="Upload a file",
    dependencies=[Depends(require_permission("uploads", "create"))],
)
@limiter.limit(upload_limit)
async def create_upload(
    request: Request,
    file: Annotated[UploadFile, File(description="File to store")],
    db: DbSession,
    storage: Storage,
    settings: AppSettings,
) -> UploadOut:
    """
    Validate size and content type, store the blob and register it.

    The response carries a presigned URL valid for ``upload_url_ttl_hours``.
    """
    service = UploadService(db, storage, settings)
    if file.size is not None:
        service.check_size(file.size)
    raw = await file.read()
    upload = await service.create(
        raw,
        original_name=file.filename or "upload",
        content_type=file.content_type,
        declared_size=file.size,
    )
    return UploadOut.from_upload(upload, _lookahead(settings))


@router.get(
    "",
    response_model=UploadListResponse,
    summary="List uploads",
    dependencies=[Depends(require_permission("uploads", "read"))],
)
async def list_uploads(
    db: DbSession,
    storage: Storage,
    settings: AppSettings,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
) -> UploadListResponse:
    uploads, total = await UploadService(db, storage, settings).list_page(page, page_size)
    lookahead = _lookahead(settings)
    return UploadListResponse(
        items=[UploadOut.from_upload(u, lookahead) for u in uploads],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/summary",
    response_model=UploadSummaryResponse,
    summary="List uploads with totals per file category",
    dependencies=[Depends(require_permission("uploads", "read"))],
)
async def upload_summary(
    db: DbSession,
    storage: Storage,
    settings: AppSettings,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
) -> UploadSummaryResponse:
    service = UploadService(db, storage, settings)
    uploads, total = await service.list_page(page, page_size)
    lookahead = _lookahead(settings)
    return UploadSummaryResponse(
        items=[UploadOut.from_upload(u, lookahead) for u in uploads],
        total=total,
        page=page,
        page_size=page_size,
        summary=await service.summary(),
    )


@router.get(
    "/{upload_id}",
    response_model=UploadOut,
    summary="Get an upload",
    dependencies=[Depends(require_permission("uploads", "read"))],
)
async def get_upload(
    upload_id: str, db: DbSession, storage: Storage, settings: AppSettings
) -> UploadOut:
    upload = await UploadService(db, storage, settings).get(upload_id)
    return UploadOut.from_upload(upload, _lookahead(settings))


@router.delete(
    "/{upload_id}",
    status_code=204,
    response_class=Response,
    summary="Delete an upload no resource references",
    dependencies=[Depends(require_permission("uploads", "delete"))],
)
async def delete_upload(
    upload_id: str, db: DbSession, storage: Storage, settings: AppSettings
) -> None:
    await UploadService(db, storage, settings).delete(upload_id)
