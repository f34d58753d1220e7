"""
Structured error taxonomy for the portfolio API.

Every application error has:
  - A stable error code (prefixed by domain)
  - An HTTP status code
  - A human-readable message
  - An optional detail dict for machine consumers

No internal state (stack traces, DB internals) is ever surfaced to clients.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    """Stable error codes. Never reuse a retired code."""

    # Auth
    AUTH_INVALID_CREDENTIALS = "AUTH_001"
    AUTH_TOKEN_INVALID = "AUTH_002"
    AUTH_INSUFFICIENT_PERMISSIONS = "AUTH_003"
    AUTH_USER_INACTIVE = "AUTH_004"
    AUTH_INSUFFICIENT_ROLE = "AUTH_005"
    AUTH_PERMISSION_CHECK_FAILED = "AUTH_006"

    # Users
    USER_NOT_FOUND = "USR_001"
    USER_USERNAME_TAKEN = "USR_002"
    USER_EMAIL_TAKEN = "USR_003"

    # Roles
    ROLE_NOT_FOUND = "ROLE_001"
    ROLE_NAME_TAKEN = "ROLE_002"
    ROLE_IN_USE = "ROLE_003"

    # Permissions
    PERM_NOT_FOUND = "PERM_001"
    PERM_NAME_TAKEN = "PERM_002"
    PERM_PAIR_TAKEN = "PERM_003"

    # Uploads
    UPLOAD_NOT_FOUND = "UPL_001"
    UPLOAD_MIME_REJECTED = "UPL_002"
    UPLOAD_TOO_LARGE = "UPL_003"
    UPLOAD_STORAGE_FAILED = "UPL_004"
    UPLOAD_PERSIST_FAILED = "UPL_005"
    UPLOAD_IN_USE = "UPL_006"

    # Resources
    RESOURCE_NOT_FOUND = "RES_001"
    RESOURCE_URL_FAILED = "RES_002"

    # Generic
    VALIDATION_ERROR = "GEN_001"
    INTERNAL_ERROR = "GEN_002"
    NOT_FOUND = "GEN_003"
    RATE_LIMITED = "GEN_004"


class AppError(Exception):
    """Base class for all application errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        http_status: int = 500,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "detail": self.detail,
            }
        }


# ── Typed convenience subclasses ──────────────────────────────────────── #


class NotFoundError(AppError):
    def __init__(
        self, entity: str, entity_id: str | None = None, code: ErrorCode = ErrorCode.NOT_FOUND
    ) -> None:
        detail = {"entity": entity}
        if entity_id:
            detail["id"] = entity_id
        super().__init__(
            code=code,
            message=f"{entity} not found",
            http_status=404,
            detail=detail,
        )


class AuthError(AppError):
    """The caller could not be authenticated at all."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(code=code, message=message, http_status=401)


class ForbiddenError(AppError):
    """The caller is authenticated but lacks the required privilege."""

    def __init__(
        self,
        message: str = "Insufficient permissions",
        code: ErrorCode = ErrorCode.AUTH_INSUFFICIENT_PERMISSIONS,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(code=code, message=message, http_status=403, detail=detail)


class PermissionCheckError(ForbiddenError):
    """The caller's identity could not be looked up while checking a permission."""

    def __init__(self, user_id: str) -> None:
        super().__init__(
            message="Failed to check permissions",
            code=ErrorCode.AUTH_PERMISSION_CHECK_FAILED,
            detail={"user_id": user_id},
        )


class ValidationError(AppError):
    def __init__(
        self,
        message: str,
        detail: dict[str, Any] | None = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ) -> None:
        super().__init__(
            code=code,
            message=message,
            http_status=422,
            detail=detail,
        )


class ConflictError(AppError):
    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(code=code, message=message, http_status=409)


class UpstreamError(AppError):
    """Object storage or database failed for reasons unrelated to caller input."""

    def __init__(self, code: ErrorCode, message: str) -> None:
        super().__init__(code=code, message=message, http_status=502)
