"""Logging setup for the daemon and the CLI."""
import asyncio
import logging
import logging.handlers
from pathlib import Path
from typing import Callable, Optional

from shopwatch.config import config

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class GatewayLogHandler(logging.Handler):
    """Forward log records to attached gateway clients as `log` events."""

    def __init__(self, emit_log: Callable[[str, str], None], level: int = logging.WARNING):
        super().__init__(level=level)
        self._emit_log = emit_log

    def emit(self, record: logging.LogRecord) -> None:
        # Records produced while broadcasting would loop back here
        if record.name.startswith("shopwatch.gateway"):
            return
        # Client transports may only be written from the event loop thread
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        try:
            self._emit_log(record.levelname.lower(), record.getMessage())
        except Exception:
            self.handleError(record)


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    console: bool = True,
) -> None:
    """Configure root logging with a console handler and a rotating file handler."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT)

    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        root.addHandler(stream_handler)

    log_path = Path(log_file or config.LOG_FILE)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.handlers.RotatingFileHandler(
        log_path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
