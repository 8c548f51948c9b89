from fastapi import APIRouter, Depends, Query

from accesscore.auth.bootstrap import AccessServices
from accesscore.auth.deps import IdentityContext, get_identity, get_services
from accesscore.auth.resolver import Decision
from accesscore.schemas.permission import DecisionOut, PermissionListResponse, PermissionOut

router = APIRouter()


def decision_out(decision: Decision) -> DecisionOut:
    return DecisionOut(
        user_id=decision.user_id,
        organization_id=decision.organization_id,
        permission=decision.permission,
        allowed=decision.allowed,
        matched_grant=str(decision.matched_grant) if decision.matched_grant else None,
        source_organization_id=decision.source_organization_id,
        role=decision.role_slug,
        reason=decision.reason.value if decision.reason else None,
    )


@router.get("/", response_model=PermissionListResponse)
async def list_permissions(
    resource: str | None = Query(None),
    action: str | None = Query(None),
    identity: IdentityContext = Depends(get_identity),
    services: AccessServices = Depends(get_services),
):
    """Catalog permissions, optionally filtered.  Requires organization.manage_roles."""
    permissions = await services.admin.list_permissions(
        identity.user_id, identity.organization_id, resource, action
    )
    return PermissionListResponse(
        permissions=[
            PermissionOut(
                resource=p.resource,
                action=p.action,
                key=p.key,
                description=p.description,
            )
            for p in permissions
        ],
        resources=sorted({p.resource for p in permissions}),
        total=len(permissions),
    )


@router.get("/check", response_model=DecisionOut)
async def check_permission(
    resource: str = Query(...),
    action: str = Query(...),
    organization_id: str | None = Query(None),
    identity: IdentityContext = Depends(get_identity),
    services: AccessServices = Depends(get_services),
):
    """Run Check() for the caller.  A deny is a 200 with allowed=false."""
    decision = await services.resolver.check(
        identity.user_id,
        organization_id or identity.organization_id,
        resource,
        action,
    )
    return decision_out(decision)
