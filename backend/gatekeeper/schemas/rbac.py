"""Pydantic schemas for roles, permissions, and resolved access."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class RoleRef(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(from_attributes=True)


class PermissionRef(BaseModel):
    id: int
    resource: str
    action: str
    type: int

    model_config = ConfigDict(from_attributes=True)


class RoleBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=128)

    @field_validator("name")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Role name is required")
        return value


class RoleCreate(RoleBase):
    pass


class RoleUpdate(RoleBase):
    pass


class RoleRead(RoleBase):
    id: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PermissionRead(PermissionRef):
    created_at: datetime
    updated_at: datetime


class RoleWithPermissions(RoleRead):
    permissions: list[PermissionRead] = []


class PermissionCreate(BaseModel):
    """A permission given either as resource/action or as ``"resource:action"``."""

    name: str | None = Field(default=None, max_length=200)
    resource: str | None = Field(default=None, max_length=128)
    action: str | None = Field(default=None, max_length=64)
    type: int = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _resolve_name(self) -> PermissionCreate:
        if self.resource is None and self.name:
            resource, _, action = self.name.strip().partition(":")
            self.resource = resource
            # A bare resource name grants generic access.
            self.action = self.action or action or "access"
        self.resource = (self.resource or "").strip()
        self.action = (self.action or "").strip()
        if not self.resource or not self.action:
            raise ValueError("Permission resource and action are required")
        return self


class PermissionUpdate(PermissionCreate):
    pass


class AssignPermissionsRequest(BaseModel):
    permission_ids: list[int] = Field(default_factory=list)

    @field_validator("permission_ids")
    @classmethod
    def _dedupe(cls, value: list[int]) -> list[int]:
        return list(dict.fromkeys(value))


class AssignmentResult(BaseModel):
    role_id: int
    assigned_permissions: int


class RbacStats(BaseModel):
    total_roles: int
    total_permissions: int
    roles_with_permissions: int
