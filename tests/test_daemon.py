"""End-to-end test of the daemon wiring."""
import asyncio

from conftest import FakeSource, make_item
from shopwatch.daemon import Daemon
from shopwatch.gateway.client import GatewayClient
from shopwatch.gateway.server import EventGateway
from shopwatch.store.database import CatalogStore
from shopwatch.utils.pid import PidFile


class ClosableSource(FakeSource):
    closed = False

    async def aclose(self):
        self.closed = True


async def test_daemon_lifecycle(tmp_path):
    """Start polls once, serves the gateway, and shutdown cleans up."""
    socket_path = str(tmp_path / "d.sock")
    source = ClosableSource([make_item("1"), make_item("2")])
    daemon = Daemon(
        store=CatalogStore(tmp_path / "d.db"),
        client=source,
        gateway=EventGateway(socket_path),
        pid_file=PidFile(tmp_path / "d.pid"),
        interval=3600,
    )

    await daemon.start()
    try:
        assert (tmp_path / "d.pid").exists()
        for _ in range(100):
            if daemon.orchestrator.last_result is not None:
                break
            await asyncio.sleep(0.01)
        assert daemon.orchestrator.last_result.new_count == 2

        result = await GatewayClient(socket_path).force_poll()
        assert result["success"] is True
        assert result["new_count"] == 0
        assert source.calls == 2
    finally:
        await daemon.shutdown()

    assert source.closed is True
    assert not (tmp_path / "d.pid").exists()
    assert not (tmp_path / "d.sock").exists()
    assert (tmp_path / "d.db").exists()
