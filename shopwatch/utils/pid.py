"""PID file handling for the daemon."""
import logging
import os
import signal
from pathlib import Path
from typing import Optional

from shopwatch.config import PID_FILE

logger = logging.getLogger(__name__)


def is_process_running(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class PidFile:
    """Records the daemon's pid so the CLI can find and signal it."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path or PID_FILE)

    def read(self) -> Optional[int]:
        try:
            return int(self.path.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None

    def running_pid(self) -> Optional[int]:
        """Pid of a live daemon, removing the file if its process is gone."""
        pid = self.read()
        if pid is None:
            return None
        if is_process_running(pid):
            return pid
        logger.info(f"Removing stale pid file for process {pid}")
        self.remove()
        return None

    def write(self, pid: Optional[int] = None) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(str(pid or os.getpid()), encoding="utf-8")

    def remove(self) -> None:
        self.path.unlink(missing_ok=True)

    def signal(self, sig: int = signal.SIGTERM) -> bool:
        pid = self.running_pid()
        if pid is None:
            return False
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            self.remove()
            return False
        return True
