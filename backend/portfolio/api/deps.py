"""
FastAPI dependency providers.

All authentication and authorization logic lives here, not in routes.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Annotated

import structlog
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio.config.settings import Settings, get_settings
from portfolio.core.errors import (
    AuthError,
    ErrorCode,
    ForbiddenError,
    NotFoundError,
    PermissionCheckError,
)
from portfolio.core.security import decode_token
from portfolio.db.models.user import User
from portfolio.db.session import get_db
from portfolio.services.authorization import AuthorizationEngine
from portfolio.services.counters import CounterDispatcher
from portfolio.services.scheduler import UrlRefreshScheduler
from portfolio.services.storage import ObjectStorage

_log = structlog.get_logger(__name__)
_bearer = HTTPBearer(auto_error=False)

DbSession = Annotated[AsyncSession, Depends(get_db)]


# ── Application collaborators ─────────────────────────────────────────── #


def get_app_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_storage(request: Request) -> ObjectStorage:
    return request.app.state.storage


def get_counters(request: Request) -> CounterDispatcher:
    return request.app.state.counters


def get_engine(request: Request) -> AuthorizationEngine:
    return request.app.state.authorization


def get_scheduler(request: Request) -> UrlRefreshScheduler:
    return request.app.state.scheduler


AppSettings = Annotated[Settings, Depends(get_app_settings)]
Storage = Annotated[ObjectStorage, Depends(get_storage)]
Counters = Annotated[CounterDispatcher, Depends(get_counters)]
Engine = Annotated[AuthorizationEngine, Depends(get_engine)]
Scheduler = Annotated[UrlRefreshScheduler, Depends(get_scheduler)]


# ── Authentication ────────────────────────────────────────────────────── #


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
    db: DbSession,
    settings: AppSettings,
) -> User:
    """
    Validate JWT Bearer token and return the authenticated User.

    Raises AuthError on any JWT problem.
    """
    if credentials is None:
        raise AuthError(
            ErrorCode.AUTH_TOKEN_INVALID, "Authorization header missing or not Bearer type"
        )

    try:
        payload = decode_token(credentials.credentials, settings)
    except JWTError as exc:
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Token invalid or expired") from exc

    if payload.get("type") != "access":
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Token is not an access token")

    user_id: str | None = payload.get("sub")  # type: ignore[assignment]
    if not user_id:
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Token missing subject")

    user = await db.get(User, user_id)
    if user is None or user.is_deleted:
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "User not found")

    if not user.is_active:
        raise AuthError(ErrorCode.AUTH_USER_INACTIVE, "Account is deactivated")

    structlog.contextvars.bind_contextvars(user_id=user.id, username=user.username)
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]


# ── Authorization ─────────────────────────────────────────────────────── #


def require_permission(resource: str, action: str) -> Callable[..., Awaitable[User]]:
    """Return a dependency that admits the caller only if it holds ``resource:action``."""

    async def _check(user: CurrentUser, db: DbSession, engine: Engine) -> User:
        try:
            allowed = await engine.has_permission(db, user.id, resource, action)
        except NotFoundError as exc:
            _log.error("permission_check_failed", user_id=user.id)
            raise PermissionCheckError(user.id) from exc
        if not allowed:
            _log.warning("permission_denied", resource=resource, action=action)
            raise ForbiddenError(
                "Insufficient permissions",
                detail={"required": f"{resource}:{action}"},
            )
        return user

    return _check


def require_any_permission(codes: list[str]) -> Callable[..., Awaitable[User]]:
    """Admit the caller if it holds any one of ``codes`` (``resource:action``)."""
    required = list(codes)

    async def _check(user: CurrentUser, db: DbSession, engine: Engine) -> User:
        try:
            allowed = await engine.has_any_permission(db, user.id, required)
        except NotFoundError as exc:
            _log.error("permission_check_failed", user_id=user.id)
            raise PermissionCheckError(user.id) from exc
        if not allowed:
            _log.warning("permission_denied", any_of=required)
            raise ForbiddenError("Insufficient permissions", detail={"any_of": required})
        return user

    return _check


def require_role(role_name: str) -> Callable[..., Awaitable[User]]:
    """Admit the caller if its legacy role label or assigned Role is ``role_name``."""

    async def _check(user: CurrentUser, db: DbSession, engine: Engine) -> User:
        try:
            allowed = await engine.has_role(db, user.id, role_name)
        except NotFoundError as exc:
            _log.error("role_check_failed", user_id=user.id)
            raise PermissionCheckError(user.id) from exc
        if not allowed:
            _log.warning("role_denied", required_role=role_name)
            raise ForbiddenError(
                f"This action requires the '{role_name}' role",
                code=ErrorCode.AUTH_INSUFFICIENT_ROLE,
                detail={"required_role": role_name},
            )
        return user

    return _check


AdminUser = Depends(require_role("admin"))
