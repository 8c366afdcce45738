"""
Admin routes - client management behind the administrator token
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import (
    ClientNotFoundError, RegistryError,
    UpstreamAuthError, UpstreamFailure, VaultError,
)
from ..core.logging import get_logger
from ..models.database import Client, utcnow
from ..models.schemas import (
    ClientCreate, ClientUpdate,
    ClientResponse, ClientDetailResponse, ClientListResponse,
    ClientStatusResponse, ClientDeleteResponse,
    ConnectionTestResponse, StatsResponse, TokenStats,
)
from ..services.client_registry import ClientRegistry
from ..services.session_broker import SessionBroker
from .auth import AuthContext, admin_auth

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


def _registry(request: Request) -> ClientRegistry:
    return request.app.state.registry


def _broker(request: Request) -> SessionBroker:
    return request.app.state.broker


async def _get_client_or_404(request: Request, db: AsyncSession, client_id: str) -> Client:
    client = await _registry(request).get(db, client_id)
    if client is None:
        raise ClientNotFoundError(client_id)
    return client


def _detail(request: Request, client: Client) -> ClientDetailResponse:
    token_cache = request.app.state.token_cache
    cached = client.token_cache
    token_status = "none"
    if cached is not None:
        token_status = "valid" if token_cache.is_valid(cached) else "expired"

    return ClientDetailResponse(
        **ClientResponse.model_validate(client).model_dump(),
        token_status=token_status,
        token_expires_at=cached.expires_at if cached else None,
        agent_id=cached.agent_id if cached else None,
        reseller_id=cached.reseller_id if cached else None,
    )


@router.get("/stats", response_model=StatsResponse)
async def get_stats(request: Request, auth: AuthContext = Depends(admin_auth)):
    """Client counts, token cache state and cleanup scheduler status"""
    registry = _registry(request)
    return StatsResponse(
        clients=await registry.count(auth.db),
        active_clients=await registry.count(auth.db, active_only=True),
        tokens=TokenStats(**await _broker(request).token_stats()),
        cleanup=request.app.state.cleanup_scheduler.status(),
        timestamp=utcnow(),
    )


@router.get("/clients", response_model=ClientListResponse)
async def list_clients(
    request: Request,
    skip: int = 0,
    limit: int = 100,
    auth: AuthContext = Depends(admin_auth),
):
    registry = _registry(request)
    clients = await registry.list(auth.db, skip=skip, limit=limit)
    return ClientListResponse(
        clients=[_detail(request, client) for client in clients],
        total=await registry.count(auth.db),
        timestamp=utcnow(),
    )


@router.post("/clients", response_model=ClientResponse, status_code=201)
async def create_client(
    request: Request,
    client_data: ClientCreate,
    auth: AuthContext = Depends(admin_auth),
):
    """
    Register a new client

    The Monty credentials are checked with a real login before anything is
    stored; the resulting session seeds the token cache.

    - **name**: Display name
    - **upstream_username**: Monty username
    - **upstream_password**: Monty password (stored encrypted)
    """
    broker = _broker(request)
    try:
        token_set = await broker.verify_credentials(
            client_data.upstream_username, client_data.upstream_password
        )
    except UpstreamAuthError as e:
        logger.warning("Client creation rejected by Monty", kind=e.kind.value, admin_id=auth.admin.id)
        if e.kind is UpstreamFailure.INVALID_CREDENTIALS:
            raise RegistryError("Monty credentials were rejected") from None
        raise

    client = await _registry(request).create(auth.db, client_data)
    await broker.store_session(client.id, token_set)

    logger.info("Client created by admin", client_id=client.id, admin_id=auth.admin.id)
    return ClientResponse.model_validate(client)


@router.get("/clients/{client_id}", response_model=ClientDetailResponse)
async def get_client(request: Request, client_id: str, auth: AuthContext = Depends(admin_auth)):
    client = await _get_client_or_404(request, auth.db, client_id)
    return _detail(request, client)


@router.put("/clients/{client_id}", response_model=ClientResponse)
async def update_client(
    request: Request,
    client_id: str,
    update_data: ClientUpdate,
    auth: AuthContext = Depends(admin_auth),
):
    """Partial update; deactivation or new credentials drop the cached session"""
    client = await _get_client_or_404(request, auth.db, client_id)
    client = await _registry(request).update(auth.db, client, update_data)

    if update_data.active is False or update_data.upstream_password or update_data.upstream_username:
        await _broker(request).invalidate_token(client.id)

    logger.info("Client updated by admin", client_id=client.id, admin_id=auth.admin.id)
    return ClientResponse.model_validate(client)


@router.delete("/clients/{client_id}", response_model=ClientDeleteResponse)
async def delete_client(request: Request, client_id: str, auth: AuthContext = Depends(admin_auth)):
    client = await _get_client_or_404(request, auth.db, client_id)
    name = client.name

    await _registry(request).delete(auth.db, client_id)
    await _broker(request).invalidate_token(client_id)

    logger.info("Client deleted by admin", client_id=client_id, admin_id=auth.admin.id)
    return ClientDeleteResponse(
        message=f"Client '{client_id}' deleted successfully",
        deleted_client={"id": client_id, "name": name},
    )


@router.post("/clients/{client_id}/activate", response_model=ClientStatusResponse)
async def activate_client(request: Request, client_id: str, auth: AuthContext = Depends(admin_auth)):
    return await _toggle_client_status(request, auth, client_id, True)


@router.post("/clients/{client_id}/deactivate", response_model=ClientStatusResponse)
async def deactivate_client(request: Request, client_id: str, auth: AuthContext = Depends(admin_auth)):
    return await _toggle_client_status(request, auth, client_id, False)


async def _toggle_client_status(
    request: Request,
    auth: AuthContext,
    client_id: str,
    active: bool,
) -> ClientStatusResponse:
    client = await _get_client_or_404(request, auth.db, client_id)
    client = await _registry(request).set_active(auth.db, client, active)

    if not active:
        await _broker(request).invalidate_token(client.id)

    state = "activated" if active else "deactivated"
    logger.info("Client status changed", client_id=client.id, active=active, admin_id=auth.admin.id)
    return ClientStatusResponse(
        id=client.id,
        name=client.name,
        active=client.active,
        message=f"Client {state} successfully",
    )


@router.post("/clients/{client_id}/rotate-key", response_model=ClientResponse)
async def rotate_api_key(request: Request, client_id: str, auth: AuthContext = Depends(admin_auth)):
    client = await _get_client_or_404(request, auth.db, client_id)
    client = await _registry(request).rotate_api_key(auth.db, client)
    return ClientResponse.model_validate(client)


@router.post("/clients/{client_id}/test", response_model=ConnectionTestResponse)
async def test_monty_connection(request: Request, client_id: str, auth: AuthContext = Depends(admin_auth)):
    """Obtain a Monty session with the stored credentials"""
    client = await _get_client_or_404(request, auth.db, client_id)

    try:
        await _broker(request).get_valid_token(client)
    except (UpstreamAuthError, VaultError) as e:
        logger.warning("Monty connection test failed", client_id=client_id, admin_id=auth.admin.id, error=e.code)
        return ConnectionTestResponse(success=False, message="Failed to connect to Monty", client_id=client_id)

    cached = await request.app.state.token_cache.get(auth.db, client_id)
    logger.info("Monty connection test successful", client_id=client_id, admin_id=auth.admin.id)
    return ConnectionTestResponse(
        success=True,
        message="Monty connection successful",
        client_id=client_id,
        agent_id=cached.agent_id if cached else None,
        reseller_id=cached.reseller_id if cached else None,
        expires_at=cached.expires_at if cached else None,
    )
