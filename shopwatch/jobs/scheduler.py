"""Recurring poll and daily maintenance loops."""
import asyncio
import logging
from typing import Optional

from shopwatch.config import config
from shopwatch.jobs.poller import PollOrchestrator
from shopwatch.store.database import CatalogStore

logger = logging.getLogger(__name__)

MAINTENANCE_INTERVAL = 24 * 60 * 60


class PollScheduler:
    """Polls every ``interval`` seconds, starting immediately, and prunes daily."""

    def __init__(
        self,
        orchestrator: PollOrchestrator,
        store: CatalogStore,
        interval: Optional[float] = None,
        maintenance_interval: float = MAINTENANCE_INTERVAL,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.interval = interval or config.POLL_INTERVAL
        self.maintenance_interval = maintenance_interval
        self._loops: list[asyncio.Task] = []
        self._current_poll: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._loops)

    def start(self) -> None:
        if self.running:
            return
        logger.info(f"Scheduling polls every {self.interval}s")
        self._loops = [
            asyncio.create_task(self._poll_loop(), name="shopwatch-poll"),
            asyncio.create_task(self._maintenance_loop(), name="shopwatch-maintenance"),
        ]

    async def stop(self) -> None:
        """Cancel the loops and wait for any in-flight poll to finish."""
        for task in self._loops:
            task.cancel()
        await asyncio.gather(*self._loops, return_exceptions=True)
        self._loops = []

        if self._current_poll and not self._current_poll.done():
            logger.info("Waiting for in-flight poll to finish")
            await asyncio.gather(self._current_poll, return_exceptions=True)
        self._current_poll = None
        logger.info("Scheduler stopped")

    async def _poll_loop(self) -> None:
        while True:
            # A shutdown must not interrupt a poll
            self._current_poll = asyncio.create_task(self.orchestrator.execute_poll())
            try:
                await asyncio.shield(self._current_poll)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Scheduled poll crashed: {e}", exc_info=True)
            await asyncio.sleep(self.interval)

    async def _maintenance_loop(self) -> None:
        while True:
            try:
                await self.store.prune_notifications()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Notification history cleanup failed: {e}", exc_info=True)
            await asyncio.sleep(self.maintenance_interval)
