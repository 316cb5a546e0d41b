"""Records persisted by the catalog store."""
import time
from datetime import datetime, timezone
from typing import Literal, Optional, Union
from pydantic import BaseModel, Field


def now_ms() -> int:
    """Current time as epoch milliseconds."""
    return int(time.time() * 1000)


def to_ms(value: Union[int, float, str, datetime, None]) -> Optional[int]:
    """Coerce an epoch-ms number, ISO-8601 string or datetime into epoch ms."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return int(value.timestamp() * 1000)
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip()
    if text.lstrip("-").isdigit():
        return int(text)
    return to_ms(datetime.fromisoformat(text.replace("Z", "+00:00")))


class PollRecord(BaseModel):
    """One poll attempt, success or failure."""

    id: Optional[int] = None
    timestamp: int = Field(default_factory=now_ms)
    item_count: int = 0
    new_count: int = 0
    duration_ms: int = 0
    success: bool = True
    error: Optional[str] = None


class NotificationRecord(BaseModel):
    """Audit entry for one attempted notification delivery."""

    id: Optional[int] = None
    item_id: str
    timestamp: int = Field(default_factory=now_ms)
    sent: bool
    item_title: Optional[str] = None
    change_summary: Optional[str] = None
    error_message: Optional[str] = None


class NotificationFilter(BaseModel):
    """Filters for notification history queries."""

    date_from: Optional[Union[int, str]] = None
    date_to: Optional[Union[int, str]] = None
    item_id: Optional[str] = None
    status: Optional[Literal["sent", "failed"]] = None
    limit: Optional[int] = Field(default=None, ge=0)
    offset: Optional[int] = Field(default=None, ge=0)


class ItemFilter(BaseModel):
    available: Optional[bool] = None
    limit: Optional[int] = Field(default=None, ge=0)
    offset: Optional[int] = Field(default=None, ge=0)


class ItemNotificationCount(BaseModel):
    item_id: str
    item_title: Optional[str] = None
    sent_count: int = 0
    failed_count: int = 0


class NotificationStats(BaseModel):
    total_sent: int = 0
    total_failed: int = 0
    count_by_item: list[ItemNotificationCount] = Field(default_factory=list)


class RecentNotification(BaseModel):
    item_id: str
    last_sent_at: int
