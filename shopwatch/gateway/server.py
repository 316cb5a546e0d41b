"""Local event gateway over a Unix domain socket."""
import asyncio
import logging
import os
from pathlib import Path
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from shopwatch.catalog.models import CatalogItem
from shopwatch.config import config
from shopwatch.gateway import protocol
from shopwatch.store.database import CatalogStore, StorageError
from shopwatch.store.records import NotificationFilter, now_ms

logger = logging.getLogger(__name__)

STREAM_LIMIT = 16 * 1024 * 1024

PollHandler = Callable[..., Awaitable]


class GatewayError(Exception):
    """The gateway could not bind its socket."""


class EventGateway:
    """Broadcasts daemon events to attached clients and answers their requests."""

    def __init__(
        self,
        socket_path: Optional[str] = None,
        store: Optional[CatalogStore] = None,
        poll_handler: Optional[PollHandler] = None,
    ):
        self.socket_path = Path(socket_path or config.IPC_SOCKET_PATH)
        self.store = store
        self.poll_handler = poll_handler
        self._server: Optional[asyncio.AbstractServer] = None
        self._clients: set[asyncio.StreamWriter] = set()
        self._tasks: set[asyncio.Task] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    async def start(self) -> None:
        await self._remove_stale_socket()
        self.socket_path.parent.mkdir(parents=True, exist_ok=True)
        self._server = await asyncio.start_unix_server(
            self._handle_client, path=str(self.socket_path), limit=STREAM_LIMIT
        )
        os.chmod(self.socket_path, 0o600)
        logger.info(f"Event gateway listening on {self.socket_path}")

    async def stop(self) -> None:
        """Stop accepting clients, let forced polls finish, then disconnect everyone."""
        if self._server is None:
            return
        self._server.close()
        while self._tasks:
            logger.info(f"Waiting for {len(self._tasks)} forced poll(s) to finish")
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        for writer in list(self._clients):
            writer.close()
        self._clients.clear()
        await self._server.wait_closed()
        self._server = None
        self.socket_path.unlink(missing_ok=True)
        logger.info("Event gateway stopped")

    async def _remove_stale_socket(self) -> None:
        """Unlink a socket left behind by a dead instance; refuse if one is alive."""
        if not self.socket_path.exists():
            return
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_unix_connection(str(self.socket_path)), timeout=1.0
            )
        except (OSError, asyncio.TimeoutError):
            logger.info(f"Removing stale socket {self.socket_path}")
            self.socket_path.unlink(missing_ok=True)
            return
        writer.close()
        await writer.wait_closed()
        raise GatewayError(f"Socket {self.socket_path} is already in use by a running instance")

    # Outbound

    def broadcast(self, event: str, data=None) -> None:
        """Write a frame to every client. No clients is a no-op."""
        if not self._clients:
            return
        frame = protocol.encode_frame(event, data)
        for writer in list(self._clients):
            if writer.is_closing():
                self._clients.discard(writer)
                continue
            try:
                writer.write(frame)
            except (ConnectionError, RuntimeError) as e:
                logger.debug(f"Dropping gateway client: {e}")
                self._clients.discard(writer)

    def emit_heartbeat(self) -> None:
        self.broadcast(protocol.HEARTBEAT, {"timestamp": now_ms()})

    def emit_items_updated(self, items: list[CatalogItem]) -> None:
        self.broadcast(protocol.ITEMS_UPDATED, {"items": items, "count": len(items), "timestamp": now_ms()})

    def emit_item_new(self, item: CatalogItem) -> None:
        self.broadcast(protocol.ITEM_NEW, {"item": item, "timestamp": now_ms()})

    def emit_error(self, error: str) -> None:
        self.broadcast(protocol.ERROR, {"error": error, "timestamp": now_ms()})

    def emit_log(self, level: str, message: str) -> None:
        self.broadcast(protocol.LOG, {"level": level, "message": message, "timestamp": now_ms()})

    async def _send(self, writer: asyncio.StreamWriter, event: str, data=None) -> None:
        if writer.is_closing():
            return
        try:
            writer.write(protocol.encode_frame(event, data))
            await writer.drain()
        except ConnectionError as e:
            logger.debug(f"Reply {event} not delivered: {e}")
            self._clients.discard(writer)

    # Inbound

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._clients.add(writer)
        logger.info(f"Gateway client connected ({len(self._clients)} total)")
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                try:
                    event, data = protocol.decode_frame(line)
                except protocol.ProtocolError as e:
                    await self._send(writer, protocol.ERROR, {"error": str(e), "timestamp": now_ms()})
                    continue
                await self._handle_request(writer, event, data)
        except ValueError as e:
            logger.warning(f"Dropping gateway client after oversized frame: {e}")
        except (ConnectionError, asyncio.IncompleteReadError, asyncio.LimitOverrunError):
            pass
        finally:
            self._clients.discard(writer)
            writer.close()
            logger.info(f"Gateway client disconnected ({len(self._clients)} remaining)")

    async def _handle_request(self, writer: asyncio.StreamWriter, event: str, data: dict) -> None:
        if event == protocol.FORCE_POLL:
            await self._handle_force_poll(writer, data)
        elif event == protocol.GET_NOTIFICATION_HISTORY:
            await self._send(writer, protocol.result_event(event), await self._notification_history(data))
        elif event == protocol.GET_NOTIFICATION_STATS:
            await self._send(writer, protocol.result_event(event), await self._notification_stats())
        else:
            await self._send(writer, protocol.ERROR, {
                "error": f"Unknown event: {event}", "request": event, "timestamp": now_ms(),
            })

    async def _handle_force_poll(self, writer: asyncio.StreamWriter, data: dict) -> None:
        logger.info("Force poll requested by gateway client")
        await self._send(writer, protocol.FORCE_POLL_RECEIVED, {"timestamp": now_ms()})
        if self.poll_handler is None:
            await self._send(writer, protocol.FORCE_POLL_RESULT, {
                "success": False, "error": "Polling is not available", "timestamp": now_ms(),
            })
            return

        async def run_poll() -> None:
            result = await self.poll_handler(target_id=data.get("item_id"))
            payload = protocol.to_wire(result)
            payload["timestamp"] = now_ms()
            await self._send(writer, protocol.FORCE_POLL_RESULT, payload)

        task = asyncio.create_task(run_poll())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _notification_history(self, data: dict) -> dict:
        if self.store is None:
            return {"success": False, "history": [], "count": 0, "error": "Store is not available"}
        try:
            filters = NotificationFilter(**data)
            history = await self.store.query_notifications(filters)
        except (ValidationError, StorageError, ValueError) as e:
            logger.error(f"Failed to get notification history: {e}")
            return {"success": False, "history": [], "count": 0, "error": str(e)}
        return {"success": True, "history": history, "count": len(history)}

    async def _notification_stats(self) -> dict:
        if self.store is None:
            return {"success": False, "error": "Store is not available"}
        try:
            stats = await self.store.notification_stats()
        except StorageError as e:
            logger.error(f"Failed to get notification stats: {e}")
            return {"success": False, "error": str(e)}
        return {"success": True, "stats": stats}
