"""
FastAPI application initialization
"""
from contextlib import asynccontextmanager
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..core.config import Settings, get_settings
from ..core.database import close_db, create_engine, create_session_factory, init_db
from ..core.errors import GatewayError, UpstreamAuthError, VaultError
from ..core.logging import get_logger, setup_logging
from ..models.database import utcnow
from ..services.cleanup_scheduler import TokenCleanupScheduler
from ..services.client_registry import ClientRegistry
from ..services.credential_vault import CredentialVault
from ..services.session_broker import SessionBroker
from ..services.token_cache import TokenCacheStore
from ..services.upstream_client import UpstreamClient
from . import admin_routes, routes
from .auth import AuthenticationGateway

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events"""
    settings: Settings = app.state.settings

    # Startup
    logger.info(
        "Starting service",
        service=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )
    for warning in settings.warnings():
        logger.warning("Security warning", warning=warning)

    try:
        await init_db(app.state.engine)
    except Exception as e:
        logger.error("Failed to initialize database", error=str(e))
        raise

    if settings.TOKEN_CLEANUP_ENABLED:
        app.state.cleanup_scheduler.start()

    yield

    # Shutdown
    logger.info("Shutting down service", service=settings.APP_NAME)
    await app.state.cleanup_scheduler.stop()
    await close_db(app.state.engine)


def create_app(
    settings: Optional[Settings] = None,
    upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the application and wire its services

    Args:
        settings: Configuration, defaults to the environment
        upstream_transport: httpx transport for the Monty client (tests)
    """
    settings = settings or get_settings()
    setup_logging(settings)

    engine = create_engine(settings)
    session_factory = create_session_factory(engine)

    vault = CredentialVault(settings.DB_ENCRYPTION_KEY, api_key_prefix=settings.API_KEY_PREFIX)
    registry = ClientRegistry(vault)
    token_cache = TokenCacheStore(margin_seconds=settings.TOKEN_VALIDITY_MARGIN)
    upstream = UpstreamClient(settings, transport=upstream_transport)
    broker = SessionBroker(registry, token_cache, upstream, session_factory)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Multi-tenant authentication gateway for the Monty eSIM reseller API",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.vault = vault
    app.state.registry = registry
    app.state.token_cache = token_cache
    app.state.broker = broker
    app.state.gateway = AuthenticationGateway(settings, registry, broker)
    app.state.cleanup_scheduler = TokenCleanupScheduler(
        token_cache, session_factory, interval_seconds=settings.TOKEN_CLEANUP_INTERVAL
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(routes.router)
    app.include_router(admin_routes.router)

    @app.exception_handler(GatewayError)
    async def gateway_exception_handler(request: Request, exc: GatewayError):
        """Render gateway errors without leaking upstream or cipher details"""
        if isinstance(exc, UpstreamAuthError):
            logger.error(
                "Upstream authentication failed",
                kind=exc.kind.value,
                upstream_status=exc.upstream_status,
                path=request.url.path,
            )
        elif isinstance(exc, VaultError):
            logger.error("Credential vault failure", error=type(exc).__name__, path=request.url.path)
        return JSONResponse(status_code=exc.status_code, content=exc.to_response())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Handle uncaught exceptions"""
        logger.error("Unhandled exception", error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal Server Error",
                "message": "An unexpected error occurred",
                "timestamp": utcnow().isoformat(),
            },
        )

    @app.get("/", tags=["General"])
    def root():
        """Root endpoint"""
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "status": "running",
            "environment": settings.ENVIRONMENT,
        }

    return app
