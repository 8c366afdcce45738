"""
API Routes for SimWeGo Gateway
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import get_db
from ..core.logging import get_logger
from ..models.database import utcnow
from ..models.schemas import (
    HealthCheckResponse,
    LoginTokens, UpstreamLoginResponse,
    SessionResponse,
)
from .auth import AuthContext, tenant_auth, tenant_only_auth, upstream_login_auth

logger = get_logger(__name__)

router = APIRouter()


# ========== Health Check ==========

@router.get("/health", response_model=HealthCheckResponse, tags=["General"])
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Health check endpoint, probes the database and the Monty API"""
    settings = request.app.state.settings
    try:
        await db.execute(text("SELECT 1"))
        db_status = "connected"
    except Exception as e:
        logger.error("Database health check failed", error=str(e))
        db_status = "disconnected"

    upstream_ok = await request.app.state.broker.check_upstream_health()

    return HealthCheckResponse(
        status="healthy" if db_status == "connected" else "unhealthy",
        service=settings.APP_NAME,
        version=settings.APP_VERSION,
        timestamp=utcnow(),
        database=db_status,
        upstream="reachable" if upstream_ok else "unreachable",
    )


# ========== Tenant Authentication ==========

@router.post("/api/v0/Agent/login", response_model=UpstreamLoginResponse, tags=["Auth"])
async def agent_login(auth: AuthContext = Depends(upstream_login_auth)):
    """
    Authenticate an end user against Monty

    - **username**: Monty username
    - **password**: Monty password

    The resulting session replaces the client's cached session.
    """
    session = auth.login_session
    return UpstreamLoginResponse(
        success=True,
        message="Authentication successful",
        tokens=LoginTokens(
            access_token=session.access_token,
            refresh_token=session.refresh_token,
            expires_at=session.expires_at,
        ),
    )


@router.post("/api/v0/Agent/logout", tags=["Auth"])
async def agent_logout(request: Request, auth: AuthContext = Depends(tenant_only_auth)):
    """Clear the cached Monty session for the calling client"""
    await request.app.state.broker.invalidate_token(auth.tenant.id)

    logger.info("Client logged out", client_id=auth.tenant.id)
    return {"success": True, "message": "Logout successful"}


@router.get("/api/v0/session", response_model=SessionResponse, tags=["Auth"])
async def current_session(request: Request, auth: AuthContext = Depends(tenant_auth)):
    """Calling client and the state of its attached Monty session"""
    token_cache = request.app.state.token_cache
    cached = await token_cache.get(auth.db, auth.tenant.id)

    return SessionResponse(
        client_id=auth.tenant.id,
        name=auth.tenant.name,
        active=auth.tenant.active,
        upstream_username=auth.tenant.upstream_username,
        has_upstream_token=bool(auth.upstream_token),
        expires_at=cached.expires_at if cached else None,
        time_to_expiry=token_cache.time_to_expiry(cached),
    )
