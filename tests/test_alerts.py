"""Tests for alert delivery channels."""
import os
import shlex
import sys

import httpx
import orjson
import pytest

from conftest import make_item
from shopwatch.config import Config
from shopwatch.notify.alerts import (
    AlertDeliveryError,
    CommandAlertChannel,
    LogAlertChannel,
    WebhookAlertChannel,
    build_alert_channel,
)
from shopwatch.notify.dispatcher import NotificationDispatcher
from shopwatch.notify.rate_limit import RateLimitCache


def _python(code: str) -> str:
    return f"{shlex.quote(sys.executable)} -c {shlex.quote(code)}"


async def test_command_channel_passes_target_and_message(tmp_path):
    """The message is passed as an argument after the target."""
    out = tmp_path / "argv.txt"
    code = f"import sys; open({str(out)!r}, 'w').write(chr(10).join(sys.argv[1:]))"
    channel = CommandAlertChannel(_python(code), "+15550100", timeout=10)
    await channel.deliver("Lamp\n$25.00")
    assert out.read_text().split("\n") == ["--target", "+15550100", "--message", "Lamp", "$25.00"]


async def test_command_channel_nonzero_exit():
    """A failing command raises with its stderr."""
    channel = CommandAlertChannel(_python("import sys; sys.stderr.write('no route'); sys.exit(3)"), "t", timeout=10)
    with pytest.raises(AlertDeliveryError, match="no route"):
        await channel.deliver("hi")


async def test_command_channel_timeout():
    """A hung command is killed after the timeout."""
    channel = CommandAlertChannel(_python("import time; time.sleep(30)"), "t", timeout=0.2)
    with pytest.raises(AlertDeliveryError, match="timed out"):
        await channel.deliver("hi")


async def test_dispatch_timeout_kills_alert_command(store, tmp_path):
    """When the dispatcher gives up on a hung command, the child does not outlive it."""
    pid_file = tmp_path / "child.pid"
    code = f"import os, time; open({str(pid_file)!r}, 'w').write(str(os.getpid())); time.sleep(30)"
    channel = CommandAlertChannel(_python(code), "t", timeout=1.0)
    dispatcher = NotificationDispatcher(
        store, channel, rate_limit=RateLimitCache(60), min_price="", keywords="", alert_timeout=1.0
    )
    await store.upsert_items([make_item("1")])

    outcome = await dispatcher.dispatch(make_item("1"))

    assert outcome.sent is False
    assert "timed out" in outcome.error
    pid = int(pid_file.read_text())
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


def test_channel_timeouts_keep_explicit_zero():
    """A zero timeout is honoured rather than replaced by the default."""
    assert CommandAlertChannel("notifier", "t", timeout=0).timeout == 0
    assert WebhookAlertChannel("https://hooks.example.com/x", timeout=0).timeout == 0


async def test_command_channel_missing_binary():
    """A command that cannot start is a delivery error."""
    channel = CommandAlertChannel("/nonexistent/notifier", "t", timeout=1)
    with pytest.raises(AlertDeliveryError):
        await channel.deliver("hi")


async def test_webhook_channel_posts_content():
    """The webhook receives the message as JSON content."""
    seen = []

    def handler(request):
        seen.append(orjson.loads(request.content))
        return httpx.Response(204)

    channel = WebhookAlertChannel("https://hooks.example.com/x", transport=httpx.MockTransport(handler))
    await channel.deliver("hello")
    assert seen == [{"content": "hello"}]


async def test_webhook_channel_error_status():
    """Non-2xx responses are delivery errors."""
    channel = WebhookAlertChannel(
        "https://hooks.example.com/x",
        transport=httpx.MockTransport(lambda request: httpx.Response(500)),
    )
    with pytest.raises(AlertDeliveryError, match="500"):
        await channel.deliver("hello")


def test_build_alert_channel(monkeypatch):
    """Command wins over webhook; nothing configured falls back to logging."""
    monkeypatch.setattr(Config, "NOTIFY_COMMAND", "notifier send")
    monkeypatch.setattr(Config, "NOTIFY_TARGET", "me")
    monkeypatch.setattr(Config, "NOTIFY_WEBHOOK_URL", "https://hooks.example.com/x")
    assert isinstance(build_alert_channel(), CommandAlertChannel)

    monkeypatch.setattr(Config, "NOTIFY_COMMAND", None)
    assert isinstance(build_alert_channel(), WebhookAlertChannel)

    monkeypatch.setattr(Config, "NOTIFY_WEBHOOK_URL", None)
    assert isinstance(build_alert_channel(), LogAlertChannel)
