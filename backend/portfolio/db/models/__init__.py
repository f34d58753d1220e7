"""Database model registry. Import all models here so Alembic can discover them."""

from portfolio.db.models.resource import Resource, ResourceType
from portfolio.db.models.upload import Upload
from portfolio.db.models.user import (
    ADMIN_ROLE,
    DEFAULT_LEGACY_ROLE,
    Permission,
    Role,
    RolePermission,
    User,
)

__all__ = [
    "ADMIN_ROLE",
    "DEFAULT_LEGACY_ROLE",
    "Permission",
    "Resource",
    "ResourceType",
    "Role",
    "RolePermission",
    "Upload",
    "User",
]
