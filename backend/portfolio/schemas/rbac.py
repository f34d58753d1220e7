"""Role and permission schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

_NAME_PATTERN = r"^[a-zA-Z0-9_\-:]+$"
_SEGMENT_PATTERN = r"^[a-zA-Z0-9_\-]+$"


class PermissionCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, pattern=_NAME_PATTERN)
    description: str = Field(default="", max_length=255)
    resource: str = Field(..., min_length=1, max_length=50, pattern=_SEGMENT_PATTERN)
    action: str = Field(..., min_length=1, max_length=50, pattern=_SEGMENT_PATTERN)


class PermissionUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100, pattern=_NAME_PATTERN)
    description: str | None = Field(default=None, max_length=255)
    resource: str | None = Field(
        default=None, min_length=1, max_length=50, pattern=_SEGMENT_PATTERN
    )
    action: str | None = Field(default=None, min_length=1, max_length=50, pattern=_SEGMENT_PATTERN)
    is_active: bool | None = None


class PermissionOut(BaseModel):
    id: str
    name: str
    description: str
    resource: str
    action: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=50, pattern=_SEGMENT_PATTERN)
    description: str = Field(default="", max_length=255)
    permission_ids: list[str] = Field(default_factory=list)


class RoleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=50, pattern=_SEGMENT_PATTERN)
    description: str | None = Field(default=None, max_length=255)
    is_active: bool | None = None
    permission_ids: list[str] | None = None


class RolePermissionsUpdate(BaseModel):
    permission_ids: list[str]


class RoleOut(BaseModel):
    id: str
    name: str
    description: str
    is_active: bool
    permissions: list[PermissionOut]
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class InitializePermissionsResponse(BaseModel):
    created: int
    total: int
