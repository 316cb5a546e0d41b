"""Daemon wiring and lifecycle."""
import asyncio
import logging
import signal
from typing import Optional

from shopwatch.fetch.client import CatalogClient
from shopwatch.gateway.server import EventGateway
from shopwatch.jobs.poller import PollOrchestrator
from shopwatch.jobs.scheduler import PollScheduler
from shopwatch.logging_conf import GatewayLogHandler
from shopwatch.notify.alerts import build_alert_channel
from shopwatch.notify.dispatcher import NotificationDispatcher
from shopwatch.store.database import CatalogStore
from shopwatch.utils.pid import PidFile

logger = logging.getLogger(__name__)


class Daemon:
    """Owns every long-lived component and tears them down in order."""

    def __init__(
        self,
        store: Optional[CatalogStore] = None,
        client: Optional[CatalogClient] = None,
        gateway: Optional[EventGateway] = None,
        pid_file: Optional[PidFile] = None,
        interval: Optional[float] = None,
    ):
        self.store = store or CatalogStore()
        self.client = client or CatalogClient()
        self.gateway = gateway or EventGateway(store=self.store)
        self.gateway.store = self.store
        self.pid_file = pid_file or PidFile()
        self.dispatcher = NotificationDispatcher(self.store, build_alert_channel())
        self.orchestrator = PollOrchestrator(self.store, self.client, self.dispatcher, gateway=self.gateway)
        self.gateway.poll_handler = self.orchestrator.force_poll
        self.scheduler = PollScheduler(self.orchestrator, self.store, interval=interval)
        self._log_handler = GatewayLogHandler(self.gateway.emit_log)
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        await self.store.initialize()
        await self.dispatcher.rebuild_rate_limits()
        await self.gateway.start()
        logging.getLogger().addHandler(self._log_handler)
        self.pid_file.write()
        self.scheduler.start()
        logger.info("Daemon started")

    async def shutdown(self) -> None:
        logger.info("Shutting down")
        await self.scheduler.stop()
        logging.getLogger().removeHandler(self._log_handler)
        await self.gateway.stop()
        await self.client.aclose()
        await self.store.close()
        self.pid_file.remove()
        logger.info("Daemon stopped")

    def request_stop(self) -> None:
        self._stop_event.set()

    async def run(self) -> None:
        """Run until SIGINT or SIGTERM."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_stop)

        try:
            await self.start()
        except Exception:
            await self.client.aclose()
            await self.store.close()
            raise

        try:
            await self._stop_event.wait()
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)
            await self.shutdown()
