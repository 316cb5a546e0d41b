"""SQLite-backed catalog store.

The working set lives in an in-memory SQLite database. After every mutating
call the whole database is copied to a temporary file with SQLite's backup API
and atomically renamed over the live file, so a successful return implies the
change is durable and a crash mid-write never leaves a truncated database.
"""
import asyncio
import logging
import os
import sqlite3
from pathlib import Path
from typing import Iterable, Optional

import aiosqlite
import orjson

from shopwatch.catalog.models import CatalogItem, Image, Variant
from shopwatch.config import config
from shopwatch.store.records import (
    ItemFilter,
    ItemNotificationCount,
    NotificationFilter,
    NotificationRecord,
    NotificationStats,
    PollRecord,
    RecentNotification,
    now_ms,
    to_ms,
)

logger = logging.getLogger(__name__)

DAY_MS = 24 * 60 * 60 * 1000

SCHEMA = """
CREATE TABLE IF NOT EXISTS items (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    handle TEXT NOT NULL,
    price REAL NOT NULL,
    compare_at_price REAL,
    available INTEGER NOT NULL,
    variants TEXT NOT NULL,
    images TEXT NOT NULL,
    description TEXT,
    url TEXT NOT NULL,
    first_seen_at INTEGER NOT NULL,
    last_seen_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS polls (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp INTEGER NOT NULL,
    item_count INTEGER NOT NULL,
    new_count INTEGER NOT NULL,
    duration_ms INTEGER NOT NULL,
    success INTEGER NOT NULL,
    error TEXT
);

CREATE TABLE IF NOT EXISTS notifications (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    item_id TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    sent INTEGER NOT NULL,
    item_title TEXT,
    change_summary TEXT,
    error_message TEXT,
    FOREIGN KEY (item_id) REFERENCES items (id)
);

CREATE TABLE IF NOT EXISTS notification_history_metadata (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    last_cleanup_timestamp INTEGER NOT NULL,
    records_deleted INTEGER NOT NULL,
    created_at INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_items_handle ON items(handle);
CREATE INDEX IF NOT EXISTS idx_items_first_seen ON items(first_seen_at);
CREATE INDEX IF NOT EXISTS idx_polls_timestamp ON polls(timestamp);
CREATE INDEX IF NOT EXISTS idx_notifications_item ON notifications(item_id);
CREATE INDEX IF NOT EXISTS idx_notifications_timestamp ON notifications(timestamp);
"""

UPSERT_ITEM = """
INSERT INTO items (
    id, title, handle, price, compare_at_price, available, variants, images,
    description, url, first_seen_at, last_seen_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    title = excluded.title,
    handle = excluded.handle,
    price = excluded.price,
    compare_at_price = excluded.compare_at_price,
    available = excluded.available,
    variants = excluded.variants,
    images = excluded.images,
    description = excluded.description,
    url = excluded.url,
    last_seen_at = MAX(items.last_seen_at, excluded.last_seen_at)
"""


class StorageError(Exception):
    """A store operation failed; for mutations nothing was committed."""


def _replace_durably(tmp_path: Path, target: Path) -> None:
    with open(tmp_path, "rb") as f:
        os.fsync(f.fileno())
    os.replace(tmp_path, target)
    try:
        dir_fd = os.open(target.parent, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


class CatalogStore:
    """Durable record of catalog items, poll history and notification history."""

    def __init__(self, db_path: Optional[str | Path] = None):
        self.db_path = Path(db_path or config.DB_PATH)
        self._tmp_path = self.db_path.with_name(self.db_path.name + ".tmp")
        self._db: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageError("Store is not initialized")
        return self._db

    async def initialize(self) -> None:
        """Open the in-memory database, load the snapshot and run migrations."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(":memory:", check_same_thread=False)
        self._db.row_factory = aiosqlite.Row

        try:
            if self.db_path.exists():
                await self._load_snapshot()
            else:
                logger.info(f"No snapshot at {self.db_path}, starting with an empty store")

            await self._db.execute("PRAGMA foreign_keys = ON")
            await self._db.executescript(SCHEMA)
            await self._db.commit()
            async with self._lock:
                await self._persist()
        except (sqlite3.Error, OSError, StorageError) as e:
            await self._db.close()
            self._db = None
            if isinstance(e, StorageError):
                raise
            raise StorageError(f"Failed to initialize store at {self.db_path}: {e}") from e
        logger.info(f"Catalog store initialized at {self.db_path}")

    async def close(self) -> None:
        if self._db is None:
            return
        async with self._lock:
            await self._db.close()
            self._db = None
        logger.info("Catalog store closed")

    async def _load_snapshot(self) -> None:
        try:
            source = await aiosqlite.connect(self.db_path)
            try:
                await source.backup(self._db)
            finally:
                await source.close()
        except sqlite3.Error as e:
            raise StorageError(f"Failed to load snapshot {self.db_path}: {e}") from e
        logger.info(f"Loaded snapshot from {self.db_path}")

    async def _persist(self) -> None:
        """Write the full in-memory state to disk (temp file + atomic rename)."""
        if self._tmp_path.exists():
            self._tmp_path.unlink()
        target = sqlite3.connect(self._tmp_path, check_same_thread=False)
        try:
            await self.db.backup(target)
        finally:
            target.close()
        await asyncio.to_thread(_replace_durably, self._tmp_path, self.db_path)

    async def _persist_or_restore(self) -> None:
        """Persist a committed change; if that fails, put the last snapshot back in memory."""
        try:
            await self._persist()
        except (OSError, sqlite3.Error) as e:
            logger.error(f"Failed to write snapshot {self.db_path}, restoring last snapshot: {e}")
            try:
                await self._load_snapshot()
            except (OSError, StorageError) as restore_error:
                logger.critical(f"Could not restore snapshot {self.db_path}: {restore_error}")
            raise StorageError(f"Failed to write snapshot {self.db_path}: {e}") from e

    async def _mutate(self, statements: Iterable[tuple[str, tuple]]) -> list[aiosqlite.Cursor]:
        """Run statements in one transaction, commit and persist.

        A failed statement rolls the transaction back. A failed snapshot write
        reverts the working set to the last snapshot, so either way nothing of
        the call survives.
        """
        async with self._lock:
            cursors = []
            try:
                for sql, params in statements:
                    cursors.append(await self.db.execute(sql, params))
                await self.db.commit()
            except sqlite3.Error as e:
                await self.db.rollback()
                raise StorageError(str(e)) from e
            except Exception:
                await self.db.rollback()
                raise
            await self._persist_or_restore()
            return cursors

    async def _fetchall(self, sql: str, params: tuple = ()) -> list[aiosqlite.Row]:
        async with self._lock:
            try:
                cursor = await self.db.execute(sql, params)
                return list(await cursor.fetchall())
            except sqlite3.Error as e:
                raise StorageError(str(e)) from e

    # Items

    async def upsert_items(self, items: list[CatalogItem], now: Optional[int] = None) -> int:
        """Insert or update items in one transaction.

        first_seen_at is only set on insert; mutable fields and last_seen_at
        are refreshed on conflict. Any failure rolls back the whole batch.
        """
        timestamp = now if now is not None else now_ms()
        statements = [(UPSERT_ITEM, self._item_params(item, timestamp)) for item in items]
        await self._mutate(statements)
        logger.info(f"Saved {len(items)} items to database")
        return len(items)

    def _item_params(self, item: CatalogItem, timestamp: int) -> tuple:
        return (
            item.id,
            item.title,
            item.handle,
            item.price,
            item.compare_at_price,
            1 if item.available else 0,
            orjson.dumps([v.model_dump() for v in item.variants]).decode(),
            orjson.dumps([img.model_dump() for img in item.images]).decode(),
            item.description,
            item.url,
            timestamp,
            timestamp,
        )

    @staticmethod
    def _row_to_item(row: aiosqlite.Row) -> CatalogItem:
        return CatalogItem(
            id=row["id"],
            title=row["title"],
            handle=row["handle"],
            price=row["price"],
            compare_at_price=row["compare_at_price"],
            available=row["available"] == 1,
            variants=[Variant(**v) for v in orjson.loads(row["variants"])],
            images=[Image(**img) for img in orjson.loads(row["images"])],
            description=row["description"],
            url=row["url"],
            first_seen_at=row["first_seen_at"],
            last_seen_at=row["last_seen_at"],
        )

    async def query_items(self, filters: Optional[ItemFilter] = None) -> list[CatalogItem]:
        """Items ordered by first_seen_at, newest first."""
        filters = filters or ItemFilter()
        query = "SELECT * FROM items"
        params: list = []
        if filters.available is not None:
            query += " WHERE available = ?"
            params.append(1 if filters.available else 0)
        query += " ORDER BY first_seen_at DESC, id"
        query, params = self._paginate(query, params, filters.limit, filters.offset)
        rows = await self._fetchall(query, tuple(params))
        return [self._row_to_item(r) for r in rows]

    async def get_item(self, item_id: str) -> Optional[CatalogItem]:
        rows = await self._fetchall("SELECT * FROM items WHERE id = ?", (item_id,))
        return self._row_to_item(rows[0]) if rows else None

    async def get_new_items(self, minutes_ago: int = 60, now: Optional[int] = None) -> list[CatalogItem]:
        """Items first seen within the last ``minutes_ago`` minutes."""
        threshold = (now if now is not None else now_ms()) - minutes_ago * 60 * 1000
        rows = await self._fetchall(
            "SELECT * FROM items WHERE first_seen_at > ? ORDER BY first_seen_at DESC",
            (threshold,),
        )
        return [self._row_to_item(r) for r in rows]

    # Polls

    async def append_poll(self, record: PollRecord) -> int:
        cursors = await self._mutate([(
            """
            INSERT INTO polls (timestamp, item_count, new_count, duration_ms, success, error)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.timestamp,
                record.item_count,
                record.new_count,
                record.duration_ms,
                1 if record.success else 0,
                record.error,
            ),
        )])
        logger.info(f"Recorded poll: {record.item_count} items, success={record.success}")
        return cursors[0].lastrowid

    async def query_polls(self, limit: int = 100) -> list[PollRecord]:
        rows = await self._fetchall(
            "SELECT * FROM polls ORDER BY timestamp DESC, id DESC LIMIT ?", (limit,)
        )
        return [
            PollRecord(
                id=r["id"],
                timestamp=r["timestamp"],
                item_count=r["item_count"],
                new_count=r["new_count"],
                duration_ms=r["duration_ms"],
                success=r["success"] == 1,
                error=r["error"],
            )
            for r in rows
        ]

    # Notifications

    async def append_notification(self, record: NotificationRecord) -> int:
        cursors = await self._mutate([(
            """
            INSERT INTO notifications (
                item_id, timestamp, sent, item_title, change_summary, error_message
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                record.item_id,
                record.timestamp,
                1 if record.sent else 0,
                record.item_title,
                record.change_summary,
                record.error_message,
            ),
        )])
        logger.debug(f"Recorded notification for item {record.item_id} (sent: {record.sent})")
        return cursors[0].lastrowid

    async def query_notifications(self, filters: Optional[NotificationFilter] = None) -> list[NotificationRecord]:
        """Notification history, newest first."""
        filters = filters or NotificationFilter()
        clauses = []
        params: list = []

        date_from = to_ms(filters.date_from)
        if date_from is not None:
            clauses.append("timestamp >= ?")
            params.append(date_from)
        date_to = to_ms(filters.date_to)
        if date_to is not None:
            clauses.append("timestamp <= ?")
            params.append(date_to)
        if filters.item_id:
            clauses.append("item_id = ?")
            params.append(filters.item_id)
        if filters.status:
            clauses.append("sent = ?")
            params.append(1 if filters.status == "sent" else 0)

        query = "SELECT * FROM notifications"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY timestamp DESC, id DESC"
        query, params = self._paginate(query, params, filters.limit, filters.offset)

        rows = await self._fetchall(query, tuple(params))
        return [
            NotificationRecord(
                id=r["id"],
                item_id=r["item_id"],
                timestamp=r["timestamp"],
                sent=r["sent"] == 1,
                item_title=r["item_title"],
                change_summary=r["change_summary"],
                error_message=r["error_message"],
            )
            for r in rows
        ]

    async def notification_stats(self) -> NotificationStats:
        totals = await self._fetchall(
            """
            SELECT
                COALESCE(SUM(CASE WHEN sent = 1 THEN 1 ELSE 0 END), 0) AS total_sent,
                COALESCE(SUM(CASE WHEN sent = 0 THEN 1 ELSE 0 END), 0) AS total_failed
            FROM notifications
            """
        )
        by_item = await self._fetchall(
            """
            SELECT
                item_id,
                MAX(item_title) AS item_title,
                SUM(CASE WHEN sent = 1 THEN 1 ELSE 0 END) AS sent_count,
                SUM(CASE WHEN sent = 0 THEN 1 ELSE 0 END) AS failed_count
            FROM notifications
            GROUP BY item_id
            ORDER BY COUNT(*) DESC, item_id
            """
        )
        return NotificationStats(
            total_sent=totals[0]["total_sent"],
            total_failed=totals[0]["total_failed"],
            count_by_item=[
                ItemNotificationCount(
                    item_id=r["item_id"],
                    item_title=r["item_title"],
                    sent_count=r["sent_count"],
                    failed_count=r["failed_count"],
                )
                for r in by_item
            ],
        )

    async def query_recent_successful_notifications(self, since: int) -> list[RecentNotification]:
        """Latest successful notification per item newer than ``since``."""
        rows = await self._fetchall(
            """
            SELECT item_id, MAX(timestamp) AS last_sent_at
            FROM notifications
            WHERE sent = 1 AND timestamp > ?
            GROUP BY item_id
            """,
            (since,),
        )
        return [RecentNotification(item_id=r["item_id"], last_sent_at=r["last_sent_at"]) for r in rows]

    async def prune_notifications(
        self,
        retention_days: Optional[int] = None,
        max_records: Optional[int] = None,
        now: Optional[int] = None,
    ) -> int:
        """Delete entries older than the retention window, then cap the history size."""
        retention_days = config.NOTIFICATION_RETENTION_DAYS if retention_days is None else retention_days
        max_records = config.NOTIFICATION_MAX_RECORDS if max_records is None else max_records
        timestamp = now if now is not None else now_ms()
        cutoff = timestamp - retention_days * DAY_MS

        async with self._lock:
            try:
                cursor = await self.db.execute("DELETE FROM notifications WHERE timestamp < ?", (cutoff,))
                deleted = cursor.rowcount
                cursor = await self.db.execute(
                    """
                    DELETE FROM notifications WHERE id NOT IN (
                        SELECT id FROM notifications ORDER BY timestamp DESC, id DESC LIMIT ?
                    )
                    """,
                    (max_records,),
                )
                deleted += cursor.rowcount
                await self.db.execute(
                    """
                    INSERT INTO notification_history_metadata
                        (last_cleanup_timestamp, records_deleted, created_at)
                    VALUES (?, ?, ?)
                    """,
                    (timestamp, deleted, now_ms()),
                )
                await self.db.commit()
            except sqlite3.Error as e:
                await self.db.rollback()
                raise StorageError(str(e)) from e
            await self._persist_or_restore()

        logger.info(f"Pruned {deleted} notification records")
        return deleted

    @staticmethod
    def _paginate(query: str, params: list, limit: Optional[int], offset: Optional[int]) -> tuple[str, list]:
        if limit is not None or offset:
            query += " LIMIT ?"
            params.append(limit if limit is not None else -1)
        if offset:
            query += " OFFSET ?"
            params.append(offset)
        return query, params
