"""
Upstream Client - Monty eSIM login, token refresh and health probe
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import httpx

from ..core.config import Settings
from ..core.errors import UpstreamAuthError, UpstreamFailure
from ..core.logging import get_logger
from ..models.database import utcnow
from ..models.schemas import TokenSet

logger = get_logger(__name__)

# Unix timestamp of 2000-01-01, the boundary between a relative duration
# and an absolute expiry in ``expires_in``
ABSOLUTE_EXPIRY_THRESHOLD = 946684800

LOGIN_PATH = "/api/v0/Agent/login"
REFRESH_PATH = "/api/v0/Token/Refresh"
HEALTH_PATH = "/HealthCheck"


def normalize_expiry(expires_in: Any, now: Optional[datetime] = None) -> datetime:
    """
    Turn the upstream ``expires_in`` value into an absolute naive UTC datetime

    The upstream returns either a duration in seconds or an absolute Unix
    timestamp in seconds. Values below the year-2000 timestamp are durations.

    Raises:
        ValueError: If the value is not numeric
    """
    value = float(expires_in)
    if value < ABSOLUTE_EXPIRY_THRESHOLD:
        return (now or utcnow()) + timedelta(seconds=value)
    return datetime.fromtimestamp(value, tz=timezone.utc).replace(tzinfo=None)


def parse_token_response(data: Any, now: Optional[datetime] = None) -> TokenSet:
    """
    Build a TokenSet from an upstream login/refresh body

    Raises:
        UpstreamAuthError: If access_token or expires_in is missing or unusable
    """
    if not isinstance(data, dict) or not data.get("access_token"):
        raise UpstreamAuthError(
            UpstreamFailure.INVALID_RESPONSE,
            "Invalid response from Monty API: missing access_token",
        )
    if not data.get("expires_in"):
        raise UpstreamAuthError(
            UpstreamFailure.INVALID_RESPONSE,
            "Invalid response from Monty API: missing expires_in",
        )

    try:
        expires_at = normalize_expiry(data["expires_in"], now)
    except (TypeError, ValueError, OverflowError, OSError):
        raise UpstreamAuthError(
            UpstreamFailure.INVALID_RESPONSE,
            "Invalid response from Monty API: unreadable expires_in",
        ) from None

    return TokenSet(
        access_token=str(data["access_token"]),
        expires_at=expires_at,
        refresh_token=data.get("refresh_token") or None,
        agent_id=_optional_str(data.get("agent_id")),
        reseller_id=_optional_str(data.get("reseller_id")),
    )


def _optional_str(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def classify_http_error(exc: httpx.HTTPError) -> UpstreamAuthError:
    """Map an httpx failure onto the upstream failure taxonomy"""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status in (401, 403):
            kind = UpstreamFailure.INVALID_CREDENTIALS
        elif status >= 500:
            kind = UpstreamFailure.SERVER_ERROR
        else:
            kind = UpstreamFailure.UPSTREAM_ERROR
        return UpstreamAuthError(kind, f"Monty API responded {status}", status_code=status)

    return UpstreamAuthError(
        UpstreamFailure.NETWORK_ERROR,
        f"Network error connecting to Monty API: {type(exc).__name__}",
    )


class UpstreamClient:
    """HTTP client for the Monty eSIM authentication endpoints"""

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = settings.UPSTREAM_API_BASE_URL.rstrip("/")
        self.timeout = settings.UPSTREAM_TIMEOUT
        self.health_timeout = settings.UPSTREAM_HEALTH_TIMEOUT
        self.headers = {
            "Content-Type": "application/json",
            "User-Agent": settings.UPSTREAM_USER_AGENT,
        }
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=timeout,
            transport=self._transport,
        )

    async def login(self, username: str, password: str) -> TokenSet:
        """
        Authenticate against Monty with a username/password pair

        Raises:
            UpstreamAuthError: Classified by cause, never carrying the
                upstream response body
        """
        logger.debug("Authenticating with Monty", base_url=self.base_url)

        async with self._client(self.timeout) as client:
            try:
                response = await client.post(
                    LOGIN_PATH,
                    json={"username": username, "password": password},
                )
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPError as e:
                raise classify_http_error(e) from None
            except ValueError:
                raise UpstreamAuthError(
                    UpstreamFailure.INVALID_RESPONSE,
                    "Invalid response from Monty API: body is not JSON",
                ) from None

        token_set = parse_token_response(data)
        logger.debug(
            "Monty authentication successful",
            agent_id=token_set.agent_id,
            reseller_id=token_set.reseller_id,
        )
        return token_set

    async def refresh(self, refresh_token: str) -> Dict[str, Any]:
        """
        Exchange a refresh token for a new token body

        Raises:
            httpx.HTTPError: If the refresh call fails
        """
        logger.debug("Attempting to refresh token with refresh_token")

        async with self._client(self.timeout) as client:
            response = await client.post(REFRESH_PATH, json={"refresh_token": refresh_token})
            response.raise_for_status()
            return response.json()

    async def check_health(self) -> bool:
        """Probe Monty with a short timeout"""
        async with self._client(self.health_timeout) as client:
            try:
                response = await client.get(HEALTH_PATH)
            except httpx.HTTPError as e:
                logger.warning("Monty API health check failed", error=type(e).__name__)
                return False
        return response.status_code == 200
