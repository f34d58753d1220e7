"""
Authorization engine.

Decisions are made by ``decide()``, a pure function over a ``Principal``
snapshot. The snapshot is loaded from the identity tables once per check;
nothing is cached between requests.

Decision order (first match wins):
  1. legacy ``role`` label is ``admin``        -> allow
  2. assigned Role is named ``admin``          -> allow
  3. assigned Role holds an active permission
     with exactly the requested resource/action -> allow
  4. otherwise                                 -> deny
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio.core.errors import ErrorCode, NotFoundError
from portfolio.db.models.user import ADMIN_ROLE, User

_log = structlog.get_logger(__name__)

CANONICAL_ACTIONS: tuple[str, ...] = ("create", "read", "update", "delete")


@dataclass(frozen=True)
class PermissionCatalog:
    """The fixed resource list enumerated for admins, crossed with the CRUD actions."""

    resources: tuple[str, ...]
    actions: tuple[str, ...] = CANONICAL_ACTIONS

    @classmethod
    def from_resources(cls, resources: Iterable[str]) -> PermissionCatalog:
        return cls(resources=tuple(resources))

    def codes(self) -> frozenset[str]:
        return frozenset(f"{r}:{a}" for r in self.resources for a in self.actions)

    def pairs(self) -> list[tuple[str, str]]:
        return [(r, a) for r in self.resources for a in self.actions]


@dataclass(frozen=True)
class Principal:
    """Read-only snapshot of everything a decision needs to know about a user."""

    user_id: str
    legacy_role: str = ""
    role_name: str | None = None
    grants: frozenset[tuple[str, str]] = field(default_factory=frozenset)

    @property
    def is_admin(self) -> bool:
        return self.legacy_role == ADMIN_ROLE or self.role_name == ADMIN_ROLE

    @classmethod
    def from_user(cls, user: User) -> Principal:
        role = user.assigned_role
        grants: frozenset[tuple[str, str]] = frozenset()
        if role is not None:
            grants = frozenset((p.resource, p.action) for p in role.permissions if p.is_active)
        return cls(
            user_id=user.id,
            legacy_role=user.role or "",
            role_name=role.name if role is not None else None,
            grants=grants,
        )


def decide(principal: Principal, resource: str, action: str) -> bool:
    if principal.legacy_role == ADMIN_ROLE:
        return True
    if principal.role_name == ADMIN_ROLE:
        return True
    if principal.role_name is not None:
        return (resource, action) in principal.grants
    return False


def parse_permission(code: str) -> tuple[str, str] | None:
    """Split ``resource:action``; anything without exactly one colon yields None."""
    parts = code.split(":")
    if len(parts) != 2:
        return None
    return parts[0], parts[1]


def has_role(principal: Principal, role_name: str) -> bool:
    return principal.legacy_role == role_name or principal.role_name == role_name


def effective_permissions(principal: Principal, catalog: PermissionCatalog) -> frozenset[str]:
    """
    Permission codes the principal holds.

    Admins get the static catalog cross product regardless of which
    permission rows exist.
    """
    if principal.is_admin:
        return catalog.codes()
    return frozenset(f"{r}:{a}" for r, a in principal.grants)


class AuthorizationEngine:
    """
    Database-facing wrapper around ``decide()``.

    Usage:
        engine = AuthorizationEngine(PermissionCatalog.from_resources(settings.admin_permission_resources))
        allowed = await engine.has_permission(db, user_id, "projects", "update")
    """

    def __init__(self, catalog: PermissionCatalog) -> None:
        self._catalog = catalog

    @property
    def catalog(self) -> PermissionCatalog:
        return self._catalog

    async def load_principal(self, db: AsyncSession, user_id: str) -> Principal:
        """
        Raises:
            NotFoundError: If the user does not exist or is soft-deleted.
        """
        user = await db.get(User, user_id)
        if user is None or user.is_deleted:
            raise NotFoundError("User", user_id, code=ErrorCode.USER_NOT_FOUND)
        return Principal.from_user(user)

    async def has_permission(
        self, db: AsyncSession, user_id: str, resource: str, action: str
    ) -> bool:
        principal = await self.load_principal(db, user_id)
        allowed = decide(principal, resource, action)
        _log.debug(
            "permission_checked",
            user_id=user_id,
            resource=resource,
            action=action,
            allowed=allowed,
        )
        return allowed

    async def has_any_permission(
        self, db: AsyncSession, user_id: str, codes: Iterable[str]
    ) -> bool:
        principal = await self.load_principal(db, user_id)
        for code in codes:
            parsed = parse_permission(code)
            if parsed is None:
                continue
            if decide(principal, *parsed):
                return True
        return False

    async def has_role(self, db: AsyncSession, user_id: str, role_name: str) -> bool:
        principal = await self.load_principal(db, user_id)
        return has_role(principal, role_name)

    async def get_user_permissions(self, db: AsyncSession, user_id: str) -> list[str]:
        principal = await self.load_principal(db, user_id)
        return sorted(effective_permissions(principal, self._catalog))
