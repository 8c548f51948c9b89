from fastapi import APIRouter, Depends, status

from accesscore.auth.bootstrap import AccessServices
from accesscore.auth.deps import IdentityContext, get_identity, get_services
from accesscore.auth.roles import Role
from accesscore.schemas.role import (
    RoleCreate,
    RoleGrantsUpdate,
    RoleListResponse,
    RoleOut,
    RolePermissionOut,
    RolePermissionsResponse,
    RoleUpdate,
)

router = APIRouter()


def role_out(role: Role) -> RoleOut:
    return RoleOut(
        id=role.id,
        slug=role.slug,
        name=role.name,
        description=role.description,
        is_system=role.is_system,
        organization_id=role.organization_id,
        grants=role.grant_strings(),
        inherits_from=list(role.inherits_from),
    )


@router.get("/", response_model=RoleListResponse)
async def list_roles(
    identity: IdentityContext = Depends(get_identity),
    services: AccessServices = Depends(get_services),
):
    """System roles plus the caller's organization's custom roles."""
    roles = await services.admin.list_roles(identity.user_id, identity.organization_id)
    return RoleListResponse(roles=[role_out(r) for r in roles], total=len(roles))


@router.post("/", response_model=RoleOut, status_code=status.HTTP_201_CREATED)
async def create_role(
    body: RoleCreate,
    identity: IdentityContext = Depends(get_identity),
    services: AccessServices = Depends(get_services),
):
    role = await services.admin.create_custom_role(
        identity.user_id,
        identity.organization_id,
        name=body.name,
        slug=body.slug,
        description=body.description,
        grants=body.grants,
    )
    return role_out(role)


@router.patch("/{slug}", response_model=RoleOut)
async def update_role(
    slug: str,
    body: RoleUpdate,
    identity: IdentityContext = Depends(get_identity),
    services: AccessServices = Depends(get_services),
):
    role = await services.admin.update_custom_role(
        identity.user_id,
        identity.organization_id,
        slug,
        name=body.name,
        description=body.description,
    )
    return role_out(role)


@router.delete("/{slug}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    slug: str,
    identity: IdentityContext = Depends(get_identity),
    services: AccessServices = Depends(get_services),
):
    await services.admin.delete_custom_role(identity.user_id, identity.organization_id, slug)


# ── Role permissions ──────────────────────────────────────────


async def _role_permissions(
    services: AccessServices, identity: IdentityContext, slug: str
) -> RolePermissionsResponse:
    role, entries = await services.admin.get_role_permissions(
        identity.user_id, identity.organization_id, slug
    )
    return RolePermissionsResponse(
        role=role_out(role),
        permissions=[
            RolePermissionOut(
                key=e.permission.key,
                resource=e.permission.resource,
                action=e.permission.action,
                description=e.permission.description,
                granted=e.granted,
            )
            for e in entries
        ],
    )


@router.get("/{slug}/permissions", response_model=RolePermissionsResponse)
async def get_role_permissions(
    slug: str,
    identity: IdentityContext = Depends(get_identity),
    services: AccessServices = Depends(get_services),
):
    """Every catalog permission, flagged by whether the role covers it."""
    return await _role_permissions(services, identity, slug)


@router.put("/{slug}/permissions", response_model=RolePermissionsResponse)
async def replace_role_permissions(
    slug: str,
    body: RoleGrantsUpdate,
    identity: IdentityContext = Depends(get_identity),
    services: AccessServices = Depends(get_services),
):
    """Replace a custom role's grants.  System roles are refused with 409."""
    await services.admin.set_role_grants(
        identity.user_id, identity.organization_id, slug, body.grants
    )
    return await _role_permissions(services, identity, slug)
