"""Pydantic schemas for role administration."""

from pydantic import BaseModel, Field

SLUG_PATTERN = r"^[a-z][a-z0-9_]*$"


# ── Roles ─────────────────────────────────────────────────────

class RoleOut(BaseModel):
    id: str
    slug: str
    name: str
    description: str
    is_system: bool
    organization_id: str | None = None
    grants: list[str]
    inherits_from: list[str] = []


class RoleListResponse(BaseModel):
    roles: list[RoleOut]
    total: int


class RoleCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    slug: str = Field(min_length=1, max_length=50, pattern=SLUG_PATTERN)
    description: str = Field(default="", max_length=500)
    grants: list[str] = []


class RoleUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)


# ── Role permissions ──────────────────────────────────────────

class RolePermissionOut(BaseModel):
    key: str
    resource: str
    action: str
    description: str
    granted: bool


class RolePermissionsResponse(BaseModel):
    role: RoleOut
    permissions: list[RolePermissionOut]


class RoleGrantsUpdate(BaseModel):
    """Replaces the role's whole grant set."""

    grants: list[str]


# ── Member roles ──────────────────────────────────────────────

class MemberRoleOut(BaseModel):
    user_id: str
    organization_id: str
    role: RoleOut


class MemberRoleUpdate(BaseModel):
    """Slug or id of a system role or one of the organization's custom roles."""

    role: str = Field(min_length=1, max_length=50)
