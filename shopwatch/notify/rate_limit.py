"""Per-item notification rate limiting."""
import logging
from typing import Callable, Dict, Iterable, Optional

from shopwatch.store.records import RecentNotification, now_ms

logger = logging.getLogger(__name__)


class RateLimitCache:
    """Tracks the most recent successful notification per item.

    The cache is an accelerator only: every entry is derivable from the
    notification history, so it can be rebuilt after a restart.
    """

    def __init__(self, window_minutes: float, clock: Callable[[], int] = now_ms):
        self.window_ms = int(window_minutes * 60 * 1000)
        self._clock = clock
        self._last_sent: Dict[str, int] = {}

    def now(self) -> int:
        return self._clock()

    def is_limited(self, item_id: str) -> bool:
        """True if the item was successfully notified within the window."""
        last = self._last_sent.get(item_id)
        if last is None:
            return False
        return self._clock() - last < self.window_ms

    def remaining_ms(self, item_id: str) -> int:
        last = self._last_sent.get(item_id)
        if last is None:
            return 0
        return max(0, self.window_ms - (self._clock() - last))

    def last_sent(self, item_id: str) -> Optional[int]:
        return self._last_sent.get(item_id)

    def record(self, item_id: str, sent_at: Optional[int] = None) -> None:
        self._last_sent[item_id] = sent_at if sent_at is not None else self._clock()

    def load(self, entries: Iterable[RecentNotification]) -> int:
        """Replace the cache contents with entries from the history."""
        self._last_sent = {e.item_id: e.last_sent_at for e in entries}
        return len(self._last_sent)

    def clear(self) -> None:
        self._last_sent.clear()

    def __len__(self) -> int:
        return len(self._last_sent)
