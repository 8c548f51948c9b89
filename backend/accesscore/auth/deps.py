"""FastAPI dependencies for the authorization adapter.

Dependencies:
  get_identity            → caller identity set by the upstream authenticator
  get_services            → the AccessServices container on app.state
  require_permission(...) → Check() the caller in their active organization

Authentication is not done here: whatever middleware verifies the caller
must place an ``IdentityContext`` on ``request.state.identity``.
"""

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status

from accesscore.auth.bootstrap import AccessServices
from accesscore.auth.resolver import Decision
from accesscore.exceptions import PermissionDeniedError


@dataclass(frozen=True)
class IdentityContext:
    user_id: str
    organization_id: str


# ── Request context ─────────────────────────────────────────

async def get_identity(request: Request) -> IdentityContext:
    identity = getattr(request.state, "identity", None)
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return identity


async def get_services(request: Request) -> AccessServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authorization services not initialised",
        )
    return services


# ── Permission-based access control ─────────────────────────

def require_permission(resource: str, action: str):
    """Dependency factory: allow only callers for whom Check() succeeds.

    Usage:
        @router.get("/clients")
        async def list_clients(
            decision: Decision = Depends(require_permission("clients", "view")),
        ):
            ...
    """
    async def _check(
        identity: IdentityContext = Depends(get_identity),
        services: AccessServices = Depends(get_services),
    ) -> Decision:
        decision = await services.resolver.check(
            identity.user_id, identity.organization_id, resource, action
        )
        if not decision.allowed:
            raise PermissionDeniedError(f"Missing permission: {decision.permission}")
        return decision

    return _check
