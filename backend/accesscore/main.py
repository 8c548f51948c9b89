import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from accesscore import __version__
from accesscore.auth.bootstrap import AccessServices, load_services
from accesscore.config import settings
from accesscore.database import create_engine, create_session_factory
from accesscore.middleware.exceptions import register_exception_handlers
from accesscore.routers import health, organizations, permissions, roles, users
from accesscore.utils.cache import close_redis, get_redis

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build services from the database on startup unless already provided."""
    engine = None
    if getattr(app.state, "services", None) is None:
        engine = create_engine(settings.database_url, echo=settings.debug)
        redis_client = await get_redis() if settings.denial_tracker == "redis" else None
        app.state.services = await load_services(
            settings, create_session_factory(engine), redis_client
        )
    try:
        yield
    finally:
        services: AccessServices = app.state.services
        await services.audit.drain()
        await close_redis()
        if engine is not None:
            await engine.dispose()
        logger.info("Authorization services stopped")


def create_app(services: AccessServices | None = None) -> FastAPI:
    app = FastAPI(
        title="AccessCore",
        description="Multi-tenant role and permission resolution",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.services = services

    # ── Exception Handlers ───────────────────────────────────
    register_exception_handlers(app)

    # ── Routers ──────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(permissions.router, prefix="/api/permissions", tags=["permissions"])
    app.include_router(roles.router, prefix="/api/roles", tags=["roles"])
    app.include_router(
        organizations.router, prefix="/api/organizations", tags=["organizations"]
    )
    app.include_router(users.router, prefix="/api/users", tags=["users"])
    return app


app = create_app()
