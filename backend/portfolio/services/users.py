"""User accounts: registration, credential checks and admin management."""

from __future__ import annotations

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from portfolio.core.errors import AuthError, ConflictError, ErrorCode, NotFoundError
from portfolio.core.security import hash_password, verify_password
from portfolio.db.models.user import DEFAULT_LEGACY_ROLE, Role, User
from portfolio.schemas.auth import RegisterRequest, UserCreate, UserUpdate

_log = structlog.get_logger(__name__)


class UserService:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def _ensure_unique(self, username: str | None, email: str | None) -> None:
        if username is not None:
            taken = await self._db.scalar(
                select(func.count()).select_from(User).where(User.username == username)
            )
            if taken:
                raise ConflictError(
                    ErrorCode.USER_USERNAME_TAKEN, f"Username '{username}' is taken."
                )
        if email is not None:
            taken = await self._db.scalar(
                select(func.count()).select_from(User).where(User.email == email)
            )
            if taken:
                raise ConflictError(ErrorCode.USER_EMAIL_TAKEN, f"Email '{email}' is taken.")

    async def _resolve_role(self, role_id: str | None) -> Role | None:
        if role_id is None:
            return None
        role = await self._db.get(Role, role_id)
        if role is None:
            raise NotFoundError("Role", role_id, code=ErrorCode.ROLE_NOT_FOUND)
        return role

    async def register(self, body: RegisterRequest) -> User:
        """Create a self-registered account carrying the default legacy role."""
        await self._ensure_unique(body.username, body.email)
        user = User(
            username=body.username,
            email=body.email,
            password_hash=hash_password(body.password),
            role=DEFAULT_LEGACY_ROLE,
            is_active=True,
        )
        self._db.add(user)
        await self._db.flush()
        _log.info("user_registered", user_id=user.id, username=user.username)
        return user

    async def create_by_admin(self, body: UserCreate) -> User:
        """
        Create an account on behalf of an administrator.

        The legacy role defaults to ``user``; ``role_id`` must name an existing role.
        """
        await self._ensure_unique(body.username, body.email)
        role = await self._resolve_role(body.role_id)
        user = User(
            username=body.username,
            email=body.email,
            password_hash=hash_password(body.password),
            role=body.role or DEFAULT_LEGACY_ROLE,
            role_id=role.id if role else None,
            is_active=True,
        )
        user.assigned_role = role
        self._db.add(user)
        await self._db.flush()
        _log.info("user_created", user_id=user.id, username=user.username, role_id=user.role_id)
        return user

    async def authenticate(self, username: str, password: str) -> User:
        """
        Raises:
            AuthError: Unknown user, wrong password, or deactivated account.
        """
        result = await self._db.execute(
            select(User).where(User.username == username, User.deleted_at.is_(None))
        )
        user = result.scalar_one_or_none()

        if user is None or not verify_password(password, user.password_hash):
            _log.warning("login_failed", username=username)
            raise AuthError(ErrorCode.AUTH_INVALID_CREDENTIALS, "Invalid username or password")

        if not user.is_active:
            raise AuthError(ErrorCode.AUTH_USER_INACTIVE, "Account is deactivated")

        return user

    async def get(self, user_id: str) -> User:
        user = await self._db.get(User, user_id)
        if user is None or user.is_deleted:
            raise NotFoundError("User", user_id, code=ErrorCode.USER_NOT_FOUND)
        return user

    async def list_page(
        self, page: int = 1, page_size: int = 20, search: str | None = None
    ) -> tuple[list[User], int]:
        query = select(User).where(User.deleted_at.is_(None))
        if search:
            pattern = f"%{search}%"
            query = query.where(or_(User.username.ilike(pattern), User.email.ilike(pattern)))

        total = await self._db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self._db.execute(
            query.order_by(User.created_at).offset((page - 1) * page_size).limit(page_size)
        )
        return list(result.scalars().all()), total or 0

    async def update(self, user_id: str, body: UserUpdate) -> User:
        user = await self.get(user_id)
        changes = body.model_dump(exclude_unset=True)

        email = changes.get("email")
        if email is not None and email != user.email:
            await self._ensure_unique(None, email)
            user.email = email

        if changes.get("role") is not None:
            user.role = changes["role"]

        if "role_id" in changes:
            role = await self._resolve_role(changes["role_id"])
            user.role_id = role.id if role else None
            user.assigned_role = role

        if changes.get("is_active") is not None:
            user.is_active = changes["is_active"]

        await self._db.flush()
        _log.info("user_updated", user_id=user.id, fields=sorted(changes))
        return user

    async def toggle_status(self, user_id: str) -> User:
        user = await self.get(user_id)
        user.is_active = not user.is_active
        await self._db.flush()
        _log.info("user_status_toggled", user_id=user.id, is_active=user.is_active)
        return user

    async def set_password(self, user_id: str, password: str) -> User:
        user = await self.get(user_id)
        user.password_hash = hash_password(password)
        await self._db.flush()
        _log.info("user_password_changed", user_id=user.id)
        return user

    async def delete(self, user_id: str) -> None:
        """Soft-delete an account; its tokens stop resolving on the next request."""
        user = await self.get(user_id)
        user.soft_delete()
        await self._db.flush()
        _log.info("user_deleted", user_id=user.id, username=user.username)
