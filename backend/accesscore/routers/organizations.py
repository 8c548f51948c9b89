from fastapi import APIRouter, Depends, status

from accesscore.auth.bootstrap import AccessServices
from accesscore.auth.deps import IdentityContext, get_identity, get_services
from accesscore.auth.hierarchy import Organization
from accesscore.schemas.organization import (
    HierarchyResponse,
    OrganizationCreate,
    OrganizationMove,
    OrganizationOut,
    OrganizationRemoveResponse,
)

router = APIRouter()


def organization_out(org: Organization) -> OrganizationOut:
    return OrganizationOut(
        id=org.id,
        name=org.name,
        organization_type=org.organization_type,
        parent_id=org.parent_id,
        hierarchy_level=org.hierarchy_level,
        is_active=org.is_active,
    )


@router.post("/", response_model=OrganizationOut, status_code=status.HTTP_201_CREATED)
async def create_organization(
    body: OrganizationCreate,
    identity: IdentityContext = Depends(get_identity),
    services: AccessServices = Depends(get_services),
):
    """Create an organization under a parent the caller may update."""
    org = await services.admin.create_organization(
        identity.user_id, body.parent_id, body.name, body.organization_type
    )
    return organization_out(org)


@router.get("/{organization_id}/hierarchy", response_model=HierarchyResponse)
async def get_hierarchy(
    organization_id: str,
    identity: IdentityContext = Depends(get_identity),
    services: AccessServices = Depends(get_services),
):
    """The organization, its active children and all active descendants."""
    await services.admin.require(identity.user_id, organization_id, "organization", "view")
    view = services.hierarchy.get_hierarchy(organization_id)
    return HierarchyResponse(
        root=organization_out(view.root),
        children=[organization_out(o) for o in view.children],
        descendants=[organization_out(o) for o in view.descendants],
    )


@router.post("/{organization_id}/move", response_model=OrganizationOut)
async def move_organization(
    organization_id: str,
    body: OrganizationMove,
    identity: IdentityContext = Depends(get_identity),
    services: AccessServices = Depends(get_services),
):
    org = await services.admin.move_organization(
        identity.user_id,
        organization_id,
        body.new_parent_id,
        body.organization_type,
    )
    return organization_out(org)


@router.post("/{organization_id}/deactivate", response_model=OrganizationOut)
async def deactivate_organization(
    organization_id: str,
    identity: IdentityContext = Depends(get_identity),
    services: AccessServices = Depends(get_services),
):
    org = await services.admin.deactivate_organization(identity.user_id, organization_id)
    return organization_out(org)


@router.delete("/{organization_id}", response_model=OrganizationRemoveResponse)
async def remove_organization(
    organization_id: str,
    identity: IdentityContext = Depends(get_identity),
    services: AccessServices = Depends(get_services),
):
    """Remove an organization whose descendants are all inactive."""
    removed = await services.admin.remove_organization(identity.user_id, organization_id)
    return OrganizationRemoveResponse(removed=[o.id for o in removed])
