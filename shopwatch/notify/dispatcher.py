"""Notification filtering, rate limiting, delivery and audit."""
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from shopwatch.catalog.models import CatalogItem
from shopwatch.config import config
from shopwatch.notify.alerts import AlertChannel
from shopwatch.notify.rate_limit import RateLimitCache
from shopwatch.store.database import CatalogStore
from shopwatch.store.records import NotificationRecord

logger = logging.getLogger(__name__)

MAX_LISTED_VARIANTS = 5


@dataclass
class DispatchOutcome:
    sent: bool
    rate_limited: bool = False
    error: Optional[str] = None


def parse_keywords(raw: Optional[str]) -> list[str]:
    """Split a comma-separated keyword list, dropping blank entries."""
    if not raw:
        return []
    return [k.strip().lower() for k in raw.split(",") if k.strip()]


def parse_min_price(raw) -> Optional[float]:
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning(f"Ignoring invalid minimum price filter: {raw!r}")
        return None


def format_message(item: CatalogItem, change_summary: Optional[str] = None) -> str:
    """Plain-text alert body for an item."""
    lines = []
    if change_summary:
        lines.append(change_summary)
    lines.append(item.title)
    lines.append(f"Price: ${item.price:.2f}")

    available = item.available_variants()
    if available:
        lines.append(f"Available variant count: {len(available)}")
        if len(available) <= MAX_LISTED_VARIANTS:
            for variant in available:
                stock = f" ({variant.inventory_quantity} in stock)" if variant.inventory_quantity > 0 else ""
                lines.append(f"  - {variant.title}{stock}")

    lines.append(item.url)
    return "\n".join(lines)


class NotificationDispatcher:
    """Decides whether to alert on an item and delivers the alert.

    Every attempted delivery is audited in the notification history. A refused
    (rate limited) dispatch is not an attempt and leaves no record.
    """

    def __init__(
        self,
        store: CatalogStore,
        channel: AlertChannel,
        rate_limit: Optional[RateLimitCache] = None,
        min_price=None,
        keywords: Optional[str] = None,
        alert_timeout: Optional[float] = None,
    ):
        self.store = store
        self.channel = channel
        self.rate_limit = rate_limit or RateLimitCache(config.NOTIFY_RATE_LIMIT_MINUTES)
        self.min_price = parse_min_price(config.NOTIFY_MIN_PRICE if min_price is None else min_price)
        self.keywords = parse_keywords(config.NOTIFY_KEYWORDS if keywords is None else keywords)
        self.alert_timeout = config.NOTIFY_TIMEOUT if alert_timeout is None else alert_timeout

    def should_notify(self, item: CatalogItem) -> bool:
        """Apply the configured price and keyword filters."""
        if self.min_price is not None:
            prices = [item.price, *(v.price for v in item.variants)]
            if not any(p >= self.min_price for p in prices):
                return False

        if self.keywords:
            title = item.title.lower()
            if not any(k in title for k in self.keywords):
                return False

        return True

    async def rebuild_rate_limits(self) -> int:
        """Reload the cache from recent successful notifications.

        On failure the cache starts empty and notifications are allowed.
        """
        since = self.rate_limit.now() - self.rate_limit.window_ms
        try:
            recent = await self.store.query_recent_successful_notifications(since)
        except Exception as e:
            logger.error(f"Failed to rebuild notification rate limits, starting empty: {e}", exc_info=True)
            self.rate_limit.clear()
            return 0
        count = self.rate_limit.load(recent)
        logger.info(f"Rebuilt rate limits for {count} items")
        return count

    def rate_limit_status(self, item_id: str) -> dict:
        return {
            "item_id": item_id,
            "rate_limited": self.rate_limit.is_limited(item_id),
            "last_sent_at": self.rate_limit.last_sent(item_id),
            "remaining_ms": self.rate_limit.remaining_ms(item_id),
        }

    def clear_rate_limits(self) -> None:
        self.rate_limit.clear()
        logger.info("Cleared notification rate limits")

    async def dispatch(self, item: CatalogItem, change_summary: Optional[str] = None) -> DispatchOutcome:
        if self.rate_limit.is_limited(item.id):
            logger.info(f"Rate limit hit for item {item.id} - skipping notification")
            return DispatchOutcome(sent=False, rate_limited=True)

        message = format_message(item, change_summary)
        logger.info(f"Sending notification for item: {item.title}")

        try:
            await asyncio.wait_for(self.channel.deliver(message), timeout=self.alert_timeout)
        except asyncio.TimeoutError:
            error = f"Alert delivery timed out after {self.alert_timeout}s"
        except Exception as e:
            error = str(e) or e.__class__.__name__
        else:
            error = None

        sent_at = self.rate_limit.now()
        if error is None:
            self.rate_limit.record(item.id, sent_at)
            logger.info(f"Notification sent successfully for item: {item.title}")
        else:
            logger.error(f"Failed to send notification for item {item.id}: {error}")

        await self._audit(NotificationRecord(
            item_id=item.id,
            timestamp=sent_at,
            sent=error is None,
            item_title=item.title,
            change_summary=change_summary,
            error_message=error,
        ))
        return DispatchOutcome(sent=error is None, error=error)

    async def _audit(self, record: NotificationRecord) -> None:
        try:
            await self.store.append_notification(record)
        except Exception as e:
            logger.error(f"Failed to record notification for item {record.item_id}: {e}")
