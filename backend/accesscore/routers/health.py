"""Health check endpoints for load balancers and monitoring."""

from datetime import datetime, timezone

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from accesscore.config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Lightweight liveness check; touches no dependency."""
    return {
        "status": "ok",
        "service": "accesscore",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
    }


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Ready once the authorization services have been built."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "starting"},
        )
    return {
        "status": "ready",
        "permissions": len(services.catalog),
        "roles": len(services.roles.list_roles()),
        "organizations": len(services.hierarchy.organizations()),
    }
