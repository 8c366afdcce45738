"""
Authentication gateway - tenant API key, Monty session, Monty login and
administrator token strategies
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Sequence

import jwt
from fastapi import Depends, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings
from ..core.database import get_db
from ..core.errors import AuthError, UpstreamAuthError, UpstreamFailure, VaultError
from ..core.logging import get_logger
from ..models.database import Client
from ..models.schemas import TokenSet, UpstreamLoginRequest
from ..services.client_registry import ClientRegistry
from ..services.credential_vault import mask
from ..services.session_broker import SessionBroker

logger = get_logger(__name__)


class AuthStrategy(str, Enum):
    API_KEY = "api_key"
    UPSTREAM_TOKEN = "upstream_token"
    UPSTREAM_LOGIN = "upstream_login"
    ADMIN_JWT = "admin_jwt"


@dataclass(frozen=True)
class TenantPrincipal:
    """What downstream handlers may know about the calling tenant"""
    id: str
    name: str
    active: bool
    upstream_username: str  # masked


@dataclass(frozen=True)
class AdminPrincipal:
    id: str
    username: str
    role: str


@dataclass
class AuthContext:
    """
    Per-request authentication state, stored on ``request.state.auth``

    Only principals are published here; the tenant record with its
    encrypted credentials stays inside the pipeline.
    """
    request: Request
    db: AsyncSession
    tenant: Optional[TenantPrincipal] = None
    upstream_token: Optional[str] = None
    admin: Optional[AdminPrincipal] = None
    login_session: Optional[TokenSet] = None


@dataclass
class _PipelineState:
    """Private to one pipeline run"""
    client: Optional[Client] = None


Strategy = Callable[[AuthContext, _PipelineState], Awaitable[None]]


def extract_bearer_token(auth_header: Optional[str]) -> Optional[str]:
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header[7:].strip() or None


def issue_admin_token(
    settings: Settings,
    admin_id: str,
    username: str,
    expires_minutes: Optional[int] = None,
    role: str = "admin",
) -> str:
    """Sign an administrator token with claims {id, username, role, iat, exp}"""
    now = datetime.now(timezone.utc)
    if expires_minutes is None:
        expires_minutes = settings.ADMIN_TOKEN_EXPIRE_MINUTES
    payload = {
        "id": admin_id,
        "username": username,
        "role": role,
        "iat": now,
        "exp": now + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, settings.ADMIN_JWT_SECRET, algorithm=settings.ADMIN_JWT_ALGORITHM)


class AuthenticationGateway:
    """
    Runs an ordered list of strategies against a request.

    Each strategy either enriches the AuthContext or raises AuthError; the
    first error ends the pipeline.
    """

    def __init__(self, settings: Settings, registry: ClientRegistry, broker: SessionBroker):
        self.settings = settings
        self.registry = registry
        self.broker = broker
        self._strategies: Dict[AuthStrategy, Strategy] = {
            AuthStrategy.API_KEY: self.authenticate_api_key,
            AuthStrategy.UPSTREAM_TOKEN: self.attach_upstream_token,
            AuthStrategy.UPSTREAM_LOGIN: self.upstream_login,
            AuthStrategy.ADMIN_JWT: self.authenticate_admin,
        }

    async def authenticate(
        self,
        request: Request,
        db: AsyncSession,
        strategies: Sequence[AuthStrategy],
    ) -> AuthContext:
        context = AuthContext(request=request, db=db)
        state = _PipelineState()
        for strategy in strategies:
            await self._strategies[strategy](context, state)
        request.state.auth = context
        return context

    async def authenticate_api_key(self, context: AuthContext, state: _PipelineState) -> None:
        request = context.request
        api_key = extract_bearer_token(request.headers.get("Authorization"))

        if not api_key:
            raise AuthError(
                401,
                "AUTH_MISSING",
                "Missing or invalid Authorization header",
                "Please provide: Authorization: Bearer [your_simwego_api_key]",
            )

        client = await self.registry.find_by_api_key(context.db, api_key, active_only=False)

        if client is None:
            logger.warning(
                "Authentication failed: Invalid API key",
                api_key=mask(api_key, visible=10),
                ip=_client_ip(request),
            )
            raise AuthError(
                401,
                "AUTH_INVALID",
                "Invalid SimWeGo API key",
                "Please contact SimWeGo support for a valid API key",
            )

        if not client.active:
            logger.warning(
                "Authentication failed: Client account suspended",
                client_id=client.id,
                ip=_client_ip(request),
            )
            raise AuthError(
                403,
                "AUTH_SUSPENDED",
                "Client account suspended",
                "Please contact SimWeGo support to reactivate your account",
            )

        state.client = client
        context.tenant = TenantPrincipal(
            id=client.id,
            name=client.name,
            active=client.active,
            upstream_username=mask(client.upstream_username),
        )
        logger.info("Client authenticated", client_id=client.id, ip=_client_ip(request))

    async def attach_upstream_token(self, context: AuthContext, state: _PipelineState) -> None:
        client = self._require_client(state)

        try:
            context.upstream_token = await self.broker.get_valid_token(client)
        except (UpstreamAuthError, VaultError) as e:
            logger.error(
                "Failed to authenticate with Monty eSIM",
                client_id=client.id,
                error=e.kind.value if isinstance(e, UpstreamAuthError) else type(e).__name__,
                ip=_client_ip(context.request),
            )
            raise AuthError(
                500,
                "MONTY_AUTH_FAILED",
                "Backend authentication failed",
                "Unable to authenticate with eSIM service. Please try again or contact support.",
            ) from None

        logger.debug("Monty token added to request", client_id=client.id)

    async def upstream_login(self, context: AuthContext, state: _PipelineState) -> None:
        client = self._require_client(state)

        try:
            credentials = UpstreamLoginRequest.model_validate(await context.request.json())
        except (ValueError, ValidationError):
            raise AuthError(
                400,
                "CREDENTIALS_MISSING",
                "Missing credentials",
                "Username and password are required",
            ) from None

        try:
            context.login_session = await self.broker.login_with_credentials(
                client, credentials.username, credentials.password
            )
        except UpstreamAuthError as e:
            if e.kind is UpstreamFailure.INVALID_CREDENTIALS:
                raise AuthError(
                    401,
                    "LOGIN_FAILED",
                    "Authentication failed",
                    "Invalid username or password",
                ) from None
            raise AuthError(
                500,
                "MONTY_AUTH_FAILED",
                "Backend authentication failed",
                "Unable to authenticate with eSIM service. Please try again or contact support.",
            ) from None

        context.upstream_token = context.login_session.access_token

    async def authenticate_admin(self, context: AuthContext, state: _PipelineState) -> None:
        request = context.request
        token = extract_bearer_token(request.headers.get("Authorization"))

        if not token:
            raise AuthError(
                401,
                "ADMIN_AUTH_MISSING",
                "Admin authentication required",
                "Please provide: Authorization: Bearer [admin_token]",
            )

        try:
            claims = jwt.decode(
                token,
                self.settings.ADMIN_JWT_SECRET,
                algorithms=[self.settings.ADMIN_JWT_ALGORITHM],
                options={"require": ["exp"], "verify_aud": False},
            )
        except jwt.ExpiredSignatureError:
            raise AuthError(401, "TOKEN_EXPIRED", "Token expired", "The provided token has expired") from None
        except jwt.InvalidTokenError:
            raise AuthError(401, "TOKEN_INVALID", "Invalid token", "The provided token is invalid") from None

        if claims.get("role") != "admin":
            logger.warning("Admin access denied", admin_id=claims.get("id"), ip=_client_ip(request))
            raise AuthError(
                403,
                "ADMIN_ACCESS_REQUIRED",
                "Admin access required",
                "This endpoint requires admin privileges",
            )

        context.admin = AdminPrincipal(
            id=str(claims.get("id")),
            username=str(claims.get("username")),
            role=claims["role"],
        )
        logger.info(
            "Admin authenticated",
            admin_id=context.admin.id,
            method=request.method,
            path=request.url.path,
        )

    @staticmethod
    def _require_client(state: _PipelineState) -> Client:
        if state.client is None:
            raise AuthError(
                401,
                "AUTH_REQUIRED",
                "Authentication required",
                "Please authenticate to access this resource",
            )
        return state.client


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def require_auth(*strategies: AuthStrategy):
    """FastAPI dependency running the given strategies in order"""

    async def dependency(request: Request, db: AsyncSession = Depends(get_db)) -> AuthContext:
        gateway: AuthenticationGateway = request.app.state.gateway
        return await gateway.authenticate(request, db, strategies)

    return dependency


# Pre-configured pipelines
tenant_auth = require_auth(AuthStrategy.API_KEY, AuthStrategy.UPSTREAM_TOKEN)
tenant_only_auth = require_auth(AuthStrategy.API_KEY)
upstream_login_auth = require_auth(AuthStrategy.API_KEY, AuthStrategy.UPSTREAM_LOGIN)
admin_auth = require_auth(AuthStrategy.ADMIN_JWT)
