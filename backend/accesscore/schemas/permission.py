"""Pydantic schemas for the permission catalog and Check() decisions."""

from pydantic import BaseModel


class PermissionOut(BaseModel):
    resource: str
    action: str
    key: str
    description: str

    model_config = {"from_attributes": True}


class PermissionListResponse(BaseModel):
    permissions: list[PermissionOut]
    resources: list[str]
    total: int


class DecisionOut(BaseModel):
    user_id: str
    organization_id: str
    permission: str
    allowed: bool
    matched_grant: str | None = None
    source_organization_id: str | None = None
    role: str | None = None
    reason: str | None = None


class EffectivePermissionsResponse(BaseModel):
    user_id: str
    organization_id: str
    role: str | None = None
    permissions: list[str]
