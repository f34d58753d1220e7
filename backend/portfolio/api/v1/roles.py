"""Role management endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from portfolio.api.deps import DbSession, require_permission
from portfolio.db.models.user import Permission, Role
from portfolio.schemas.rbac import PermissionOut, RoleCreate, RoleOut, RolePermissionsUpdate, RoleUpdate
from portfolio.services.roles import RoleService

router = APIRouter(prefix="/roles", tags=["roles"])


@router.post(
    "",
    response_model=RoleOut,
    status_code=201,
    summary="Create a role",
    dependencies=[Depends(require_permission("roles", "create"))],
)
async def create_role(body: RoleCreate, db: DbSession) -> Role:
    return await RoleService(db).create(body)


@router.get(
    "",
    response_model=list[RoleOut],
    summary="List roles with their permissions",
    dependencies=[Depends(require_permission("roles", "read"))],
)
async def list_roles(db: DbSession) -> list[Role]:
    return await RoleService(db).list_all()


@router.get(
    "/{role_id}",
    response_model=RoleOut,
    summary="Get a role",
    dependencies=[Depends(require_permission("roles", "read"))],
)
async def get_role(role_id: str, db: DbSession) -> Role:
    return await RoleService(db).get(role_id)


@router.patch(
    "/{role_id}",
    response_model=RoleOut,
    summary="Update a role; permission_ids, when given, replaces the set",
    dependencies=[Depends(require_permission("roles", "update"))],
)
async def update_role(role_id: str, body: RoleUpdate, db: DbSession) -> Role:
    return await RoleService(db).update(role_id, body)


@router.delete(
    "/{role_id}",
    status_code=204,
    response_class=Response,
    summary="Delete a role no user is assigned to",
    dependencies=[Depends(require_permission("roles", "delete"))],
)
async def delete_role(role_id: str, db: DbSession) -> None:
    await RoleService(db).delete(role_id)


@router.get(
    "/{role_id}/permissions",
    response_model=list[PermissionOut],
    summary="Permissions granted by a role",
    dependencies=[Depends(require_permission("roles", "read"))],
)
async def get_role_permissions(role_id: str, db: DbSession) -> list[Permission]:
    return await RoleService(db).get_permissions(role_id)


@router.put(
    "/{role_id}/permissions",
    response_model=RoleOut,
    summary="Replace the permissions granted by a role",
    dependencies=[Depends(require_permission("roles", "update"))],
)
async def assign_role_permissions(
    role_id: str, body: RolePermissionsUpdate, db: DbSession
) -> Role:
    return await RoleService(db).assign_permissions(role_id, body.permission_ids)
