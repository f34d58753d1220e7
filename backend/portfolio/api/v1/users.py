"""User administration endpoints."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response

from portfolio.api.deps import DbSession, Engine, require_permission
from portfolio.db.models.user import User
from portfolio.schemas.auth import (
    PasswordUpdate,
    UserCreate,
    UserListResponse,
    UserOut,
    UserPermissionsResponse,
    UserUpdate,
)
from portfolio.services.users import UserService

router = APIRouter(prefix="/users", tags=["users"])


@router.get(
    "",
    response_model=UserListResponse,
    summary="List users",
    dependencies=[Depends(require_permission("users", "read"))],
)
async def list_users(
    db: DbSession,
    page: Annotated[int, Query(ge=1)] = 1,
    page_size: Annotated[int, Query(ge=1, le=100)] = 20,
    search: Annotated[str | None, Query(max_length=100)] = None,
) -> UserListResponse:
    users, total = await UserService(db).list_page(page=page, page_size=page_size, search=search)
    return UserListResponse(
        items=[UserOut.model_validate(u) for u in users],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/{user_id}",
    response_model=UserOut,
    summary="Get a user",
    dependencies=[Depends(require_permission("users", "read"))],
)
async def get_user(user_id: str, db: DbSession) -> User:
    return await UserService(db).get(user_id)


@router.get(
    "/{user_id}/permissions",
    response_model=UserPermissionsResponse,
    summary="Permission codes held by a user",
    dependencies=[Depends(require_permission("users", "read"))],
)
async def get_user_permissions(
    user_id: str, db: DbSession, engine: Engine
) -> UserPermissionsResponse:
    permissions = await engine.get_user_permissions(db, user_id)
    return UserPermissionsResponse(user_id=user_id, permissions=permissions)


@router.patch(
    "/{user_id}",
    response_model=UserOut,
    summary="Update a user's email, roles or status",
    dependencies=[Depends(require_permission("users", "update"))],
)
async def update_user(user_id: str, body: UserUpdate, db: DbSession) -> User:
    return await UserService(db).update(user_id, body)


@router.post(
    "/{user_id}/toggle-status",
    response_model=UserOut,
    summary="Activate or deactivate a user",
    dependencies=[Depends(require_permission("users", "update"))],
)
async def toggle_user_status(user_id: str, db: DbSession) -> User:
    return await UserService(db).toggle_status(user_id)


@router.post(
    "",
    response_model=UserOut,
    status_code=201,
    summary="Create a user",
    dependencies=[Depends(require_permission("users", "create"))],
)
async def create_user(body: UserCreate, db: DbSession) -> User:
    return await UserService(db).create_by_admin(body)


@router.patch(
    "/{user_id}/password",
    status_code=204,
    response_class=Response,
    summary="Set a user's password",
    dependencies=[Depends(require_permission("users", "update"))],
)
async def set_user_password(user_id: str, body: PasswordUpdate, db: DbSession) -> None:
    await UserService(db).set_password(user_id, body.password)


@router.delete(
    "/{user_id}",
    status_code=204,
    response_class=Response,
    summary="Soft-delete a user",
    dependencies=[Depends(require_permission("users", "delete"))],
)
async def delete_user(user_id: str, db: DbSession) -> None:
    await UserService(db).delete(user_id)
