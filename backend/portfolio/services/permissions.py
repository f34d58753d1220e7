"""Permission catalogue management."""

from __future__ import annotations

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio.core.errors import ConflictError, ErrorCode, NotFoundError
from portfolio.db.models.user import Permission, RolePermission
from portfolio.schemas.rbac import PermissionCreate, PermissionUpdate
from portfolio.services.authorization import PermissionCatalog

_log = structlog.get_logger(__name__)


class PermissionService:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def _by_name(self, name: str) -> Permission | None:
        result = await self._db.execute(select(Permission).where(Permission.name == name))
        return result.scalar_one_or_none()

    async def _by_pair(self, resource: str, action: str) -> Permission | None:
        result = await self._db.execute(
            select(Permission).where(Permission.resource == resource, Permission.action == action)
        )
        return result.scalar_one_or_none()

    async def create(self, body: PermissionCreate) -> Permission:
        if await self._by_name(body.name) is not None:
            raise ConflictError(
                ErrorCode.PERM_NAME_TAKEN, f"Permission '{body.name}' already exists."
            )
        if await self._by_pair(body.resource, body.action) is not None:
            raise ConflictError(
                ErrorCode.PERM_PAIR_TAKEN,
                f"A permission for {body.resource}:{body.action} already exists.",
            )

        permission = Permission(
            name=body.name,
            description=body.description,
            resource=body.resource,
            action=body.action,
            is_active=True,
        )
        self._db.add(permission)
        await self._db.flush()
        _log.info("permission_created", permission_id=permission.id, code=permission.code)
        return permission

    async def get(self, permission_id: str) -> Permission:
        permission = await self._db.get(Permission, permission_id)
        if permission is None:
            raise NotFoundError("Permission", permission_id, code=ErrorCode.PERM_NOT_FOUND)
        return permission

    async def list_all(self) -> list[Permission]:
        result = await self._db.execute(
            select(Permission).order_by(Permission.resource, Permission.action)
        )
        return list(result.scalars().all())

    async def list_by_resource(self, resource: str) -> list[Permission]:
        result = await self._db.execute(
            select(Permission).where(Permission.resource == resource).order_by(Permission.action)
        )
        return list(result.scalars().all())

    async def get_many(self, permission_ids: list[str]) -> list[Permission]:
        """
        Resolve every id or fail.

        Raises:
            NotFoundError: Naming the first id with no matching row.
        """
        if not permission_ids:
            return []
        wanted = list(dict.fromkeys(permission_ids))
        result = await self._db.execute(select(Permission).where(Permission.id.in_(wanted)))
        found = {p.id: p for p in result.scalars().all()}
        for permission_id in wanted:
            if permission_id not in found:
                raise NotFoundError("Permission", permission_id, code=ErrorCode.PERM_NOT_FOUND)
        return [found[pid] for pid in wanted]

    async def update(self, permission_id: str, body: PermissionUpdate) -> Permission:
        permission = await self.get(permission_id)
        changes = body.model_dump(exclude_unset=True, exclude_none=True)

        new_name = changes.get("name")
        if new_name and new_name != permission.name:
            if await self._by_name(new_name) is not None:
                raise ConflictError(
                    ErrorCode.PERM_NAME_TAKEN, f"Permission '{new_name}' already exists."
                )
            permission.name = new_name

        if "description" in changes:
            permission.description = changes["description"]

        new_resource = changes.get("resource", permission.resource)
        new_action = changes.get("action", permission.action)
        if (new_resource, new_action) != (permission.resource, permission.action):
            if await self._by_pair(new_resource, new_action) is not None:
                raise ConflictError(
                    ErrorCode.PERM_PAIR_TAKEN,
                    f"A permission for {new_resource}:{new_action} already exists.",
                )
            permission.resource = new_resource
            permission.action = new_action

        if "is_active" in changes:
            permission.is_active = changes["is_active"]

        await self._db.flush()
        _log.info("permission_updated", permission_id=permission.id, fields=sorted(changes))
        return permission

    async def delete(self, permission_id: str) -> None:
        permission = await self.get(permission_id)
        await self._db.execute(
            delete(RolePermission).where(RolePermission.permission_id == permission_id)
        )
        await self._db.delete(permission)
        await self._db.flush()
        _log.info("permission_deleted", permission_id=permission_id)

    async def initialize_defaults(self, catalog: PermissionCatalog) -> int:
        """Create any missing ``resource:action`` permission. Returns the number created."""
        result = await self._db.execute(select(Permission.name))
        existing = set(result.scalars().all())
        pair_result = await self._db.execute(select(Permission.resource, Permission.action))
        existing_pairs = {(r, a) for r, a in pair_result.all()}

        created = 0
        for resource, action in catalog.pairs():
            name = f"{resource}:{action}"
            if name in existing or (resource, action) in existing_pairs:
                continue
            self._db.add(
                Permission(
                    name=name,
                    description=f"{action.capitalize()} {resource}",
                    resource=resource,
                    action=action,
                    is_active=True,
                )
            )
            created += 1

        await self._db.flush()
        if created:
            _log.info("default_permissions_initialized", created=created)
        return created
