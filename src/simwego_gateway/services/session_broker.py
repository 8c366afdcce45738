"""
Session Broker - keeps every tenant attached to a valid Monty session
"""
import asyncio
from dataclasses import replace
from typing import Dict

import httpx
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..core.errors import UpstreamAuthError, UpstreamFailure
from ..core.logging import get_logger
from ..models.database import Client, utcnow
from ..models.schemas import TokenSet
from .client_registry import ClientRegistry
from .credential_vault import mask
from .token_cache import TokenCacheStore
from .upstream_client import UpstreamClient, parse_token_response

logger = get_logger(__name__)


class SessionBroker:
    """
    Decides, per request, between the cached session, a refresh and a full
    login, and persists whatever it obtains.

    At most one acquisition runs per tenant: concurrent callers that find
    no usable cache row await the same task.
    """

    def __init__(
        self,
        registry: ClientRegistry,
        token_cache: TokenCacheStore,
        upstream: UpstreamClient,
        session_factory: async_sessionmaker,
    ):
        self.registry = registry
        self.token_cache = token_cache
        self.upstream = upstream
        self.session_factory = session_factory
        self._inflight: Dict[str, asyncio.Task] = {}
        # Bumped on invalidation; acquisitions started under an older value are not persisted
        self._generations: Dict[str, int] = {}

    async def get_valid_token(self, client: Client) -> str:
        """
        Return a usable upstream access token for a client

        Raises:
            UpstreamAuthError: If neither refresh nor full login succeeds
            DecryptionError: If the stored password cannot be decrypted
        """
        async with self.session_factory() as db:
            cached = await self.token_cache.get(db, client.id)

        if cached is not None and self.token_cache.is_valid(cached):
            logger.debug(
                "Using cached token",
                client_id=client.id,
                expires_at=cached.expires_at.isoformat(),
                time_to_expiry=self.token_cache.time_to_expiry(cached),
            )
            return cached.access_token

        task = self._inflight.get(client.id)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._acquire(client))
            self._inflight[client.id] = task
            task.add_done_callback(lambda done, client_id=client.id: self._release(client_id, done))
        else:
            logger.debug("Joining in-flight token acquisition", client_id=client.id)

        # A caller going away must not cancel the acquisition for the others
        return await asyncio.shield(task)

    def _release(self, client_id: str, task: asyncio.Task) -> None:
        if self._inflight.get(client_id) is task:
            del self._inflight[client_id]
        if not task.cancelled():
            # Mark the outcome as retrieved even if every caller went away
            task.exception()

    async def _acquire(self, client: Client) -> str:
        generation = self._generations.get(client.id, 0)

        async with self.session_factory() as db:
            cached = await self.token_cache.get(db, client.id)

        if cached is not None and self.token_cache.is_valid(cached):
            return cached.access_token

        token_set = None
        if cached is not None and cached.refresh_token:
            logger.info("Refreshing Monty token using refresh_token", client_id=client.id, reason="expired")
            try:
                token_set = await self.refresh_token(cached.refresh_token)
                token_set = replace(
                    token_set,
                    refresh_token=token_set.refresh_token or cached.refresh_token,
                    agent_id=token_set.agent_id or cached.agent_id,
                    reseller_id=token_set.reseller_id or cached.reseller_id,
                )
            except (httpx.HTTPError, UpstreamAuthError, ValueError) as e:
                logger.warning(
                    "Refresh token failed, falling back to full authentication",
                    client_id=client.id,
                    error=type(e).__name__,
                )
                token_set = None
        else:
            logger.info(
                "Refreshing Monty token using full authentication",
                client_id=client.id,
                reason="no_refresh_token" if cached is not None else "not_found",
            )

        if token_set is None:
            token_set = await self.authenticate(client)

        await self._store_if_current(client.id, token_set, generation)

        logger.info(
            "Monty token refreshed",
            client_id=client.id,
            agent_id=token_set.agent_id,
            reseller_id=token_set.reseller_id,
            expires_at=token_set.expires_at.isoformat(),
        )
        return token_set.access_token

    async def refresh_token(self, refresh_token: str) -> TokenSet:
        """
        Exchange a refresh token for a new session

        Any failure propagates; callers treat it as a signal to log in again.
        """
        data = await self.upstream.refresh(refresh_token)
        return self._require_future(parse_token_response(data))

    async def authenticate(self, client: Client) -> TokenSet:
        """
        Full login with the client's stored credentials

        Raises:
            UpstreamAuthError: Classified by cause
        """
        username, password = self.registry.get_upstream_credentials(client)
        try:
            return self._require_future(await self.upstream.login(username, password))
        except UpstreamAuthError as e:
            logger.error(
                "Failed to authenticate with Monty",
                client_id=client.id,
                upstream_username=mask(username),
                kind=e.kind.value,
                upstream_status=e.upstream_status,
                detail=e.detail,
            )
            raise

    async def verify_credentials(self, username: str, password: str) -> TokenSet:
        """Log in with the given credentials without persisting anything"""
        return self._require_future(await self.upstream.login(username, password))

    async def login_with_credentials(self, client: Client, username: str, password: str) -> TokenSet:
        """
        Log in with request-supplied credentials and cache the session

        Used to authenticate an end user distinct from the client's stored
        service account.
        """
        generation = self._generations.get(client.id, 0)
        try:
            token_set = await self.verify_credentials(username, password)
        except UpstreamAuthError as e:
            logger.warning(
                "Monty login with supplied credentials failed",
                client_id=client.id,
                upstream_username=mask(username),
                kind=e.kind.value,
                upstream_status=e.upstream_status,
            )
            raise

        await self._store_if_current(client.id, token_set, generation)
        logger.info(
            "User authenticated via Monty",
            client_id=client.id,
            upstream_username=mask(username),
            agent_id=token_set.agent_id,
            reseller_id=token_set.reseller_id,
        )
        return token_set

    async def store_session(self, client_id: str, token_set: TokenSet) -> None:
        async with self.session_factory() as db:
            await self.token_cache.upsert(db, client_id, token_set)

    async def _store_if_current(self, client_id: str, token_set: TokenSet, generation: int) -> bool:
        """
        Persist a session acquired under ``generation``

        Nothing is written when the client was deleted, deactivated or had
        its session invalidated while the upstream call was in flight.
        """
        async with self.session_factory() as db:
            current = await self.registry.get(db, client_id)
            if (
                current is None
                or not current.active
                or self._generations.get(client_id, 0) != generation
            ):
                logger.info("Discarding session acquired for a revoked client", client_id=client_id)
                return False

            try:
                await self.token_cache.upsert(db, client_id, token_set)
            except IntegrityError:
                # Client row removed between the check and the write
                await db.rollback()
                logger.info("Discarding session acquired for a deleted client", client_id=client_id)
                return False
        return True

    async def invalidate_token(self, client_id: str) -> bool:
        """Drop the cached session (logout, deactivation)"""
        self._generations[client_id] = self._generations.get(client_id, 0) + 1
        async with self.session_factory() as db:
            removed = await self.token_cache.delete(db, client_id)
        logger.info("Token invalidated", client_id=client_id, removed=removed)
        return removed

    async def token_stats(self) -> Dict[str, int]:
        async with self.session_factory() as db:
            return await self.token_cache.stats(db)

    async def check_upstream_health(self) -> bool:
        return await self.upstream.check_health()

    @staticmethod
    def _require_future(token_set: TokenSet) -> TokenSet:
        if token_set.expires_at <= utcnow():
            raise UpstreamAuthError(
                UpstreamFailure.INVALID_RESPONSE,
                "Invalid response from Monty API: token already expired",
            )
        return token_set
