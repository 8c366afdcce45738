"""
Token Cache - Database operations for cached upstream sessions
"""
from datetime import datetime, timedelta
from typing import Dict, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.errors import TokenCacheError
from ..core.logging import get_logger
from ..models.database import TokenCache, utcnow
from ..models.schemas import TokenSet

logger = get_logger(__name__)

UPSERT_DIALECTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class TokenCacheStore:
    """Service for token cache database operations, one row per client"""

    def __init__(self, margin_seconds: int = 60):
        self.margin_seconds = margin_seconds

    async def get(self, db: AsyncSession, client_id: str) -> Optional[TokenCache]:
        """Get the cached session for a client"""
        result = await db.execute(
            select(TokenCache)
            .where(TokenCache.client_id == client_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def upsert(self, db: AsyncSession, client_id: str, token_set: TokenSet) -> None:
        """
        Insert or overwrite the cached session for a client

        The row is written by a single ``INSERT ... ON CONFLICT DO UPDATE``
        so concurrent writers never leave a mix of old and new fields.

        Raises:
            TokenCacheError: If the token is empty or already expired
        """
        now = utcnow()
        if not token_set.access_token:
            raise TokenCacheError("Access token cannot be empty")
        if token_set.expires_at <= now:
            raise TokenCacheError("Expiry date must be in the future")

        values = {
            "client_id": client_id,
            "access_token": token_set.access_token,
            "refresh_token": token_set.refresh_token,
            "expires_at": token_set.expires_at,
            "agent_id": token_set.agent_id,
            "reseller_id": token_set.reseller_id,
            "updated_at": now,
        }

        insert = UPSERT_DIALECTS.get(db.bind.dialect.name)
        if insert is None:
            await db.merge(TokenCache(created_at=now, **values))
        else:
            statement = insert(TokenCache).values(created_at=now, **values)
            statement = statement.on_conflict_do_update(
                index_elements=[TokenCache.client_id],
                set_={key: value for key, value in values.items() if key != "client_id"},
            )
            await db.execute(statement)
        await db.commit()

        logger.debug("Token cache upserted", client_id=client_id, expires_at=token_set.expires_at.isoformat())

    async def delete(self, db: AsyncSession, client_id: str) -> bool:
        """Remove the cached session for a client"""
        result = await db.execute(delete(TokenCache).where(TokenCache.client_id == client_id))
        await db.commit()
        return result.rowcount > 0

    def is_valid(
        self,
        entry: Optional[TokenCache],
        margin_seconds: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Check whether a cached access token is still usable

        A token is usable only while ``now < expires_at - margin``.
        """
        if entry is None or entry.expires_at is None:
            return False
        if margin_seconds is None:
            margin_seconds = self.margin_seconds
        now = now or utcnow()
        return now < entry.expires_at - timedelta(seconds=margin_seconds)

    @staticmethod
    def time_to_expiry(entry: Optional[TokenCache], now: Optional[datetime] = None) -> int:
        """Whole seconds until expiry, never negative"""
        if entry is None or entry.expires_at is None:
            return 0
        now = now or utcnow()
        return max(0, int((entry.expires_at - now).total_seconds()))

    async def sweep_expired(self, db: AsyncSession) -> int:
        """
        Clean up expired tokens (for maintenance)

        Returns:
            Number of rows removed
        """
        result = await db.execute(delete(TokenCache).where(TokenCache.expires_at < utcnow()))
        await db.commit()

        count = result.rowcount or 0
        if count > 0:
            logger.info("Cleaned expired tokens from cache", count=count)
        return count

    async def stats(self, db: AsyncSession) -> Dict[str, int]:
        """Count cached sessions by expiry state"""
        total = (await db.execute(select(func.count()).select_from(TokenCache))).scalar_one()
        valid = (
            await db.execute(
                select(func.count()).select_from(TokenCache).where(TokenCache.expires_at > utcnow())
            )
        ).scalar_one()
        return {"total": total, "valid": valid, "expired": total - valid}
