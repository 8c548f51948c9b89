from fastapi import APIRouter, Depends, Query

from accesscore.auth.bootstrap import AccessServices
from accesscore.auth.deps import IdentityContext, get_identity, get_services
from accesscore.routers.roles import role_out
from accesscore.schemas.permission import EffectivePermissionsResponse
from accesscore.schemas.role import MemberRoleOut, MemberRoleUpdate

router = APIRouter()


@router.get("/{user_id}/permissions", response_model=EffectivePermissionsResponse)
async def get_user_permissions(
    user_id: str,
    organization_id: str | None = Query(None),
    identity: IdentityContext = Depends(get_identity),
    services: AccessServices = Depends(get_services),
):
    """Effective permissions of a user in an organization.

    Anyone may read their own; reading someone else's requires
    organization.manage_staff in that organization.
    """
    org_id = organization_id or identity.organization_id
    if user_id != identity.user_id:
        await services.admin.require(identity.user_id, org_id, "organization", "manage_staff")

    permissions = await services.resolver.effective_permissions(user_id, org_id)
    return EffectivePermissionsResponse(
        user_id=user_id,
        organization_id=org_id,
        role=await services.resolver.get_role(user_id, org_id),
        permissions=[p.key for p in permissions],
    )


# ── Member role ───────────────────────────────────────────────


@router.get("/{user_id}/role", response_model=MemberRoleOut)
async def get_user_role(
    user_id: str,
    identity: IdentityContext = Depends(get_identity),
    services: AccessServices = Depends(get_services),
):
    """The user's role in the caller's organization."""
    membership, role = await services.admin.get_member_role(
        identity.user_id, identity.organization_id, user_id
    )
    return MemberRoleOut(
        user_id=membership.user_id,
        organization_id=membership.organization_id,
        role=role_out(role),
    )


@router.put("/{user_id}/role", response_model=MemberRoleOut)
async def update_user_role(
    user_id: str,
    body: MemberRoleUpdate,
    identity: IdentityContext = Depends(get_identity),
    services: AccessServices = Depends(get_services),
):
    membership = await services.admin.assign_role(
        identity.user_id, identity.organization_id, user_id, body.role
    )
    return MemberRoleOut(
        user_id=membership.user_id,
        organization_id=membership.organization_id,
        role=role_out(services.roles.get_role(membership.role_slug)),
    )
