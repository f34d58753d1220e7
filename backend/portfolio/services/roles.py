"""Role management: CRUD plus wholesale permission assignment."""

from __future__ import annotations

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio.core.errors import ConflictError, ErrorCode, NotFoundError
from portfolio.db.models.user import Permission, Role, User
from portfolio.schemas.rbac import RoleCreate, RoleUpdate
from portfolio.services.permissions import PermissionService

_log = structlog.get_logger(__name__)


class RoleService:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db
        self._permissions = PermissionService(db)

    async def _by_name(self, name: str) -> Role | None:
        result = await self._db.execute(select(Role).where(Role.name == name))
        return result.scalar_one_or_none()

    async def create(self, body: RoleCreate) -> Role:
        if await self._by_name(body.name) is not None:
            raise ConflictError(ErrorCode.ROLE_NAME_TAKEN, f"Role '{body.name}' already exists.")

        permissions = await self._permissions.get_many(body.permission_ids)
        role = Role(name=body.name, description=body.description, is_active=True)
        role.permissions = permissions
        self._db.add(role)
        await self._db.flush()
        _log.info("role_created", role_id=role.id, name=role.name, permissions=len(permissions))
        return role

    async def get(self, role_id: str) -> Role:
        role = await self._db.get(Role, role_id)
        if role is None:
            raise NotFoundError("Role", role_id, code=ErrorCode.ROLE_NOT_FOUND)
        return role

    async def list_all(self) -> list[Role]:
        result = await self._db.execute(select(Role).order_by(Role.name))
        return list(result.scalars().all())

    async def update(self, role_id: str, body: RoleUpdate) -> Role:
        role = await self.get(role_id)
        changes = body.model_dump(exclude_unset=True)

        new_name = changes.get("name")
        if new_name and new_name != role.name:
            if await self._by_name(new_name) is not None:
                raise ConflictError(
                    ErrorCode.ROLE_NAME_TAKEN, f"Role '{new_name}' already exists."
                )
            role.name = new_name

        if changes.get("description") is not None:
            role.description = changes["description"]
        if changes.get("is_active") is not None:
            role.is_active = changes["is_active"]

        if body.permission_ids is not None:
            role.permissions = await self._permissions.get_many(body.permission_ids)

        await self._db.flush()
        _log.info("role_updated", role_id=role.id, fields=sorted(changes))
        return role

    async def delete(self, role_id: str) -> None:
        role = await self.get(role_id)
        in_use = await self._db.scalar(
            select(func.count())
            .select_from(User)
            .where(User.role_id == role_id, User.deleted_at.is_(None))
        )
        if in_use:
            raise ConflictError(
                ErrorCode.ROLE_IN_USE,
                f"Role '{role.name}' is assigned to {in_use} user(s) and cannot be deleted.",
            )

        # Soft-deleted users still hold the foreign key
        await self._db.execute(
            update(User).where(User.role_id == role_id).values(role_id=None)
        )
        await self._db.delete(role)
        await self._db.flush()
        _log.info("role_deleted", role_id=role_id, name=role.name)

    async def assign_permissions(self, role_id: str, permission_ids: list[str]) -> Role:
        """Replace the role's permission set with exactly ``permission_ids``."""
        role = await self.get(role_id)
        role.permissions = await self._permissions.get_many(permission_ids)
        await self._db.flush()
        _log.info("role_permissions_assigned", role_id=role.id, permissions=len(role.permissions))
        return role

    async def get_permissions(self, role_id: str) -> list[Permission]:
        role = await self.get(role_id)
        return list(role.permissions)
