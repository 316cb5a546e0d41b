"""Alert delivery channels."""
import asyncio
import logging
import shlex
from typing import Optional, Protocol

import httpx

from shopwatch.config import config

logger = logging.getLogger(__name__)


class AlertDeliveryError(Exception):
    """The channel could not deliver a message."""


class AlertChannel(Protocol):
    name: str

    async def deliver(self, message: str) -> None:
        ...


class CommandAlertChannel:
    """Delivers a message by running an external messaging command.

    The configured command is split with shlex and invoked without a shell as
    ``<command...> --target <target> --message <message>``.
    """

    name = "command"

    def __init__(self, command: str, target: str, timeout: Optional[float] = None):
        self.argv = shlex.split(command)
        if not self.argv:
            raise ValueError("Alert command must not be empty")
        self.target = target
        self.timeout = config.NOTIFY_TIMEOUT if timeout is None else timeout

    async def deliver(self, message: str) -> None:
        argv = [*self.argv, "--target", self.target, "--message", message]
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise AlertDeliveryError(f"Cannot run {self.argv[0]}: {e}") from e

        try:
            _, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise AlertDeliveryError(f"{self.argv[0]} timed out after {self.timeout}s") from e
        finally:
            # Also reached when the caller cancels us
            if process.returncode is None:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()

        if process.returncode != 0:
            detail = stderr.decode(errors="replace").strip()[:500]
            raise AlertDeliveryError(f"{self.argv[0]} exited with {process.returncode}: {detail}")


class WebhookAlertChannel:
    """POSTs ``{"content": message}`` to a webhook URL."""

    name = "webhook"

    def __init__(
        self,
        url: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.timeout = config.NOTIFY_TIMEOUT if timeout is None else timeout
        self._transport = transport

    async def deliver(self, message: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(self.url, json={"content": message})
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise AlertDeliveryError(f"Webhook returned {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise AlertDeliveryError(f"Webhook request failed: {e}") from e


class LogAlertChannel:
    """Writes the message to the log; used when no channel is configured."""

    name = "log"

    async def deliver(self, message: str) -> None:
        logger.info(f"Notification:\n{message}")


def build_alert_channel() -> AlertChannel:
    """Choose the channel from configuration."""
    if config.NOTIFY_COMMAND:
        return CommandAlertChannel(config.NOTIFY_COMMAND, config.NOTIFY_TARGET or "")
    if config.NOTIFY_WEBHOOK_URL:
        return WebhookAlertChannel(config.NOTIFY_WEBHOOK_URL)
    logger.warning("No notification channel configured, notifications will only be logged")
    return LogAlertChannel()
