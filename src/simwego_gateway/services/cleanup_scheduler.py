"""
Token Cleanup Scheduler - periodic sweep of expired cache rows
"""
import asyncio
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from ..core.logging import get_logger
from .token_cache import TokenCacheStore

logger = get_logger(__name__)


class TokenCleanupScheduler:
    """Runs ``sweep_expired`` on a fixed interval in the background"""

    def __init__(
        self,
        token_cache: TokenCacheStore,
        session_factory: async_sessionmaker,
        interval_seconds: int = 3600,
    ):
        self.token_cache = token_cache
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.is_running:
            logger.warning("Token cleanup scheduler is already running")
            return

        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info("Token cleanup scheduler started", interval_minutes=round(self.interval_seconds / 60))

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Token cleanup scheduler stopped")

    async def cleanup(self) -> int:
        """Sweep once, returning the number of rows removed"""
        async with self.session_factory() as db:
            deleted = await self.token_cache.sweep_expired(db)
        if deleted > 0:
            logger.info("Scheduled cleanup removed expired tokens", count=deleted)
        return deleted

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.cleanup()
            except Exception:
                logger.exception("Error during scheduled token cleanup")

    def status(self) -> Dict[str, object]:
        return {
            "is_running": self.is_running,
            "interval_minutes": round(self.interval_seconds / 60),
        }
