"""Authentication API endpoints."""

import structlog
from fastapi import APIRouter, Request, Response
from jose import JWTError

from portfolio.api.deps import AppSettings, CurrentUser, DbSession, Engine
from portfolio.api.limits import auth_limit, limiter
from portfolio.core.errors import AuthError, ErrorCode
from portfolio.core.security import create_access_token, create_refresh_token, decode_token
from portfolio.db.models.user import User
from portfolio.schemas.auth import (
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
    UserOut,
    UserPermissionsResponse,
)
from portfolio.services.users import UserService

_log = structlog.get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse, summary="Obtain access and refresh tokens")
@limiter.limit(auth_limit)
async def login(
    request: Request,
    body: LoginRequest,
    db: DbSession,
    settings: AppSettings,
) -> TokenResponse:
    """Authenticate with username and password."""
    user = await UserService(db).authenticate(body.username, body.password)
    _log.info("login_success", user_id=user.id, username=user.username)
    return TokenResponse(
        access_token=create_access_token(subject=user.id, role=user.role, settings=settings),
        refresh_token=create_refresh_token(subject=user.id, settings=settings),
        token_type="bearer",
        expires_in=settings.jwt_access_token_expire_minutes * 60,
    )


@router.post(
    "/register",
    response_model=UserOut,
    status_code=201,
    summary="Create an account with the default role",
)
@limiter.limit(auth_limit)
async def register(request: Request, body: RegisterRequest, db: DbSession) -> User:
    return await UserService(db).register(body)


@router.post("/refresh", response_model=TokenResponse, summary="Refresh access token")
async def refresh_token(
    body: RefreshRequest,
    db: DbSession,
    settings: AppSettings,
) -> TokenResponse:
    """Exchange a valid refresh token for a new access token."""
    try:
        payload = decode_token(body.refresh_token, settings)
    except JWTError as exc:
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Refresh token invalid") from exc

    if payload.get("type") != "refresh":
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Not a refresh token")

    user = await db.get(User, str(payload.get("sub")))
    if user is None or user.is_deleted:
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "User not found")
    if not user.is_active:
        raise AuthError(ErrorCode.AUTH_USER_INACTIVE, "Account is deactivated")

    return TokenResponse(
        access_token=create_access_token(subject=user.id, role=user.role, settings=settings),
        refresh_token=body.refresh_token,
        token_type="bearer",
        expires_in=settings.jwt_access_token_expire_minutes * 60,
    )


@router.get("/me", response_model=UserOut, summary="Current user profile")
async def get_me(current_user: CurrentUser) -> User:
    return current_user


@router.get(
    "/me/permissions",
    response_model=UserPermissionsResponse,
    summary="Permission codes held by the current user",
)
async def get_my_permissions(
    current_user: CurrentUser, db: DbSession, engine: Engine
) -> UserPermissionsResponse:
    permissions = await engine.get_user_permissions(db, current_user.id)
    return UserPermissionsResponse(user_id=current_user.id, permissions=permissions)


@router.post(
    "/logout",
    status_code=204,
    response_class=Response,
    summary="End the current session",
)
async def logout(current_user: CurrentUser) -> None:
    """Tokens are stateless; clients discard them and the event is logged."""
    _log.info("logout", user_id=current_user.id, username=current_user.username)
