"""Permission catalogue endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from portfolio.api.deps import AdminUser, DbSession, Engine, require_permission
from portfolio.db.models.user import Permission
from portfolio.schemas.rbac import (
    InitializePermissionsResponse,
    PermissionCreate,
    PermissionOut,
    PermissionUpdate,
)
from portfolio.services.permissions import PermissionService

router = APIRouter(prefix="/permissions", tags=["permissions"])


@router.post(
    "",
    response_model=PermissionOut,
    status_code=201,
    summary="Create a permission",
    dependencies=[Depends(require_permission("permissions", "create"))],
)
async def create_permission(body: PermissionCreate, db: DbSession) -> Permission:
    return await PermissionService(db).create(body)


@router.get(
    "",
    response_model=list[PermissionOut],
    summary="List permissions",
    dependencies=[Depends(require_permission("permissions", "read"))],
)
async def list_permissions(db: DbSession) -> list[Permission]:
    return await PermissionService(db).list_all()


@router.post(
    "/initialize",
    response_model=InitializePermissionsResponse,
    summary="Create the default resource:action permissions that are missing",
    dependencies=[AdminUser],
)
async def initialize_permissions(db: DbSession, engine: Engine) -> InitializePermissionsResponse:
    created = await PermissionService(db).initialize_defaults(engine.catalog)
    return InitializePermissionsResponse(created=created, total=len(engine.catalog.codes()))


@router.get(
    "/resource/{resource}",
    response_model=list[PermissionOut],
    summary="List permissions guarding one resource",
    dependencies=[Depends(require_permission("permissions", "read"))],
)
async def list_permissions_by_resource(resource: str, db: DbSession) -> list[Permission]:
    return await PermissionService(db).list_by_resource(resource)


@router.get(
    "/{permission_id}",
    response_model=PermissionOut,
    summary="Get a permission",
    dependencies=[Depends(require_permission("permissions", "read"))],
)
async def get_permission(permission_id: str, db: DbSession) -> Permission:
    return await PermissionService(db).get(permission_id)


@router.patch(
    "/{permission_id}",
    response_model=PermissionOut,
    summary="Update a permission",
    dependencies=[Depends(require_permission("permissions", "update"))],
)
async def update_permission(
    permission_id: str, body: PermissionUpdate, db: DbSession
) -> Permission:
    return await PermissionService(db).update(permission_id, body)


@router.delete(
    "/{permission_id}",
    status_code=204,
    response_class=Response,
    summary="Delete a permission and detach it from every role",
    dependencies=[Depends(require_permission("permissions", "delete"))],
)
async def delete_permission(permission_id: str, db: DbSession) -> None:
    await PermissionService(db).delete(permission_id)
