"""Client side of the event gateway, used by the CLI."""
import asyncio
import logging
from pathlib import Path
from typing import Optional

from shopwatch.config import config
from shopwatch.gateway import protocol
from shopwatch.gateway.server import STREAM_LIMIT

logger = logging.getLogger(__name__)


class GatewayClient:
    """Short-lived connections to a running daemon."""

    def __init__(self, socket_path: Optional[str] = None, timeout: float = 5.0):
        self.socket_path = Path(socket_path or config.IPC_SOCKET_PATH)
        self.timeout = timeout

    async def _connect(self):
        return await asyncio.wait_for(
            asyncio.open_unix_connection(str(self.socket_path), limit=STREAM_LIMIT),
            timeout=self.timeout,
        )

    async def is_daemon_reachable(self) -> bool:
        if not self.socket_path.exists():
            return False
        try:
            _, writer = await self._connect()
        except (OSError, asyncio.TimeoutError):
            return False
        writer.close()
        await writer.wait_closed()
        return True

    async def wait_for_daemon(self, timeout: float = 10.0, interval: float = 0.2) -> bool:
        """Poll until the daemon accepts connections or the timeout expires."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if await self.is_daemon_reachable():
                return True
            await asyncio.sleep(interval)
        return False

    async def request(
        self,
        event: str,
        data: Optional[dict] = None,
        response_event: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> dict:
        """Send one request and wait for its reply.

        Broadcast frames arriving in between are skipped.
        """
        replies = await self._exchange(event, data, [response_event or protocol.result_event(event)], timeout)
        return replies[-1]

    async def force_poll(self, item_id: Optional[str] = None, timeout: float = 120.0) -> dict:
        """Ask the daemon to poll now and return the poll result."""
        data = {"item_id": item_id} if item_id else {}
        replies = await self._exchange(
            protocol.FORCE_POLL,
            data,
            [protocol.FORCE_POLL_RECEIVED, protocol.FORCE_POLL_RESULT],
            timeout,
        )
        return replies[-1]

    async def _exchange(self, event: str, data: Optional[dict], expected: list[str], timeout: Optional[float]) -> list[dict]:
        reader, writer = await self._connect()
        try:
            writer.write(protocol.encode_frame(event, data))
            await writer.drain()
            return await asyncio.wait_for(
                self._read_replies(reader, event, expected), timeout=timeout or self.timeout
            )
        finally:
            writer.close()
            await writer.wait_closed()

    async def _read_replies(self, reader: asyncio.StreamReader, event: str, expected: list[str]) -> list[dict]:
        """Collect the expected replies in order.

        Error frames only count when they answer this request; broadcast errors
        from unrelated polls are skipped like any other broadcast.
        """
        replies = []
        pending = list(expected)
        while pending:
            line = await reader.readline()
            if not line:
                raise ConnectionError("Daemon closed the connection")
            name, payload = protocol.decode_frame(line)
            if name == pending[0]:
                replies.append(payload)
                pending.pop(0)
            elif name == protocol.ERROR and payload.get("request") == event:
                raise RuntimeError(payload.get("error", "Daemon returned an error"))
        return replies
