"""Pydantic schemas for the organization tree."""

from pydantic import BaseModel, Field

from accesscore.auth.hierarchy import OrganizationType


class OrganizationOut(BaseModel):
    id: str
    name: str
    organization_type: OrganizationType
    parent_id: str | None = None
    hierarchy_level: int
    is_active: bool

    model_config = {"from_attributes": True}


class HierarchyResponse(BaseModel):
    root: OrganizationOut
    children: list[OrganizationOut]
    descendants: list[OrganizationOut]


class OrganizationMove(BaseModel):
    new_parent_id: str | None = None
    organization_type: OrganizationType | None = None


class OrganizationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    parent_id: str
    organization_type: OrganizationType = OrganizationType.CHILD


class OrganizationRemoveResponse(BaseModel):
    removed: list[str]
