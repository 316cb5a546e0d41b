"""Poll orchestration: fetch, diff, persist, notify, broadcast."""
import logging
import time
from dataclasses import asdict, dataclass
from typing import Callable, Optional, Protocol

from shopwatch.catalog.differ import ChangeSet, compare
from shopwatch.catalog.models import CatalogItem
from shopwatch.fetch.errors import FetchError
from shopwatch.notify.dispatcher import NotificationDispatcher
from shopwatch.store.database import CatalogStore
from shopwatch.store.records import PollRecord, now_ms

logger = logging.getLogger(__name__)

POLL_IN_PROGRESS = "Poll already in progress"


class CatalogSource(Protocol):
    async def fetch_catalog(self) -> list[CatalogItem]:
        ...


class PollTargetNotFound(Exception):
    pass


@dataclass
class PollResult:
    success: bool
    item_count: int = 0
    new_count: int = 0
    duration_ms: int = 0
    error: Optional[str] = None
    already_running: bool = False


class PollOrchestrator:
    """Runs one poll at a time; overlapping requests are rejected, not queued."""

    def __init__(
        self,
        store: CatalogStore,
        source: CatalogSource,
        dispatcher: NotificationDispatcher,
        gateway=None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.source = source
        self.dispatcher = dispatcher
        self.gateway = gateway
        self._clock = clock
        self._polling = False
        self.last_result: Optional[PollResult] = None
        self.last_poll_at: Optional[int] = None

    @property
    def polling(self) -> bool:
        return self._polling

    def status(self) -> dict:
        return {
            "polling": self._polling,
            "last_poll_at": self.last_poll_at,
            "last_result": asdict(self.last_result) if self.last_result else None,
        }

    async def force_poll(self, target_id: Optional[str] = None) -> PollResult:
        return await self.execute_poll(target_id=target_id)

    async def execute_poll(self, target_id: Optional[str] = None) -> PollResult:
        # Check and set happen with no await in between
        if self._polling:
            logger.warning(f"{POLL_IN_PROGRESS}, skipping")
            return PollResult(success=False, error=POLL_IN_PROGRESS, already_running=True)

        self._polling = True
        try:
            result = await self._run_poll(target_id)
        finally:
            self._polling = False

        self.last_result = result
        if self.gateway:
            self.gateway.emit_heartbeat()
        return result

    async def _run_poll(self, target_id: Optional[str]) -> PollResult:
        poll_time = self._clock()
        started = time.monotonic()
        self.last_poll_at = poll_time
        logger.info(f"Starting poll{f' for item {target_id}' if target_id else ''}")

        try:
            fresh = await self.source.fetch_catalog()
            if target_id is not None:
                fresh = [item for item in fresh if item.id == target_id]
                if not fresh:
                    raise PollTargetNotFound(f"Item with ID {target_id} not found")

            prior = await self.store.query_items()
            changes = compare(prior, fresh)
            cold_start = not prior
            await self.store.upsert_items(fresh, now=poll_time)
        except (FetchError, PollTargetNotFound) as e:
            return await self._fail(poll_time, started, str(e))
        except Exception as e:
            logger.error(f"Unexpected poll failure: {e}", exc_info=True)
            return await self._fail(poll_time, started, str(e) or e.__class__.__name__)

        stored = await self._broadcast_changes(fresh, changes)

        if cold_start:
            if changes.new_items:
                logger.info(f"First poll: {len(changes.new_items)} items recorded without notifications")
        else:
            await self._notify(changes, stored)

        result = PollResult(
            success=True,
            item_count=len(fresh),
            new_count=len(changes.new_items),
            duration_ms=self._elapsed_ms(started),
        )
        await self._record(poll_time, result)
        logger.info(
            f"Poll completed: {result.item_count} items, {result.new_count} new, "
            f"{len(changes.updated_items)} updated in {result.duration_ms}ms"
        )
        return result

    async def _broadcast_changes(self, fresh: list[CatalogItem], changes: ChangeSet) -> dict[str, CatalogItem]:
        """Emit gateway events and return the stored versions of fresh items by id."""
        try:
            items = await self.store.query_items()
        except Exception as e:
            logger.error(f"Failed to read items after upsert: {e}")
            items = fresh
        stored = {item.id: item for item in items}

        if self.gateway:
            self.gateway.emit_items_updated(items)
            for item in changes.new_items:
                self.gateway.emit_item_new(stored.get(item.id, item))
        return stored

    async def _notify(self, changes: ChangeSet, stored: dict[str, CatalogItem]) -> None:
        """Dispatch for new and back-in-stock items, sequentially in feed order."""
        targets: list[tuple[CatalogItem, str]] = [(item, "New item") for item in changes.new_items]
        targets += [(item, "Back in stock") for item in changes.restocked_items]

        for item, summary in targets:
            item = stored.get(item.id, item)
            try:
                if not self.dispatcher.should_notify(item):
                    logger.debug(f"Item {item.id} filtered out of notifications")
                    continue
                await self.dispatcher.dispatch(item, change_summary=summary)
            except Exception as e:
                logger.error(f"Notification failed for item {item.id}: {e}", exc_info=True)

    async def _fail(self, poll_time: int, started: float, error: str) -> PollResult:
        logger.error(f"Poll failed: {error}")
        result = PollResult(success=False, duration_ms=self._elapsed_ms(started), error=error)
        await self._record(poll_time, result)
        if self.gateway:
            self.gateway.emit_error(error)
        return result

    async def _record(self, poll_time: int, result: PollResult) -> None:
        try:
            await self.store.append_poll(PollRecord(
                timestamp=poll_time,
                item_count=result.item_count,
                new_count=result.new_count,
                duration_ms=result.duration_ms,
                success=result.success,
                error=result.error,
            ))
        except Exception as e:
            logger.error(f"Failed to record poll: {e}")

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
