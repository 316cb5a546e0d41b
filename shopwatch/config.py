"""Configuration management from environment variables."""
import os
from pathlib import Path
from dotenv import load_dotenv

# Load .env file
load_dotenv()


def _default_data_dir() -> Path:
    """Resolve the data directory (SHOPWATCH_DATA_DIR or XDG data home)."""
    override = os.getenv("SHOPWATCH_DATA_DIR")
    if override:
        return Path(override).expanduser().resolve()
    xdg_data_home = os.getenv("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(xdg_data_home) / "shopwatch"


def _default_socket_path() -> str:
    runtime_dir = os.getenv("XDG_RUNTIME_DIR") or "/tmp"
    return str(Path(runtime_dir) / "shopwatch.sock")


DATA_DIR = _default_data_dir()
LOG_DIR = DATA_DIR / "logs"
PID_FILE = DATA_DIR / "daemon.pid"


class Config:
    """Application configuration."""

    # Storefront
    STORE_URL: str = os.getenv("STORE_URL", "https://shop.lumenalta.com").rstrip("/")
    SESSION_COOKIE: str | None = os.getenv("SESSION_COOKIE")
    COOKIES_FILE: str = os.getenv("COOKIES_FILE", str(DATA_DIR / "cookies.json"))
    USER_AGENT: str = os.getenv("USER_AGENT", "shopwatch/0.1")

    # Fetch
    FETCH_TIMEOUT: float = float(os.getenv("FETCH_TIMEOUT", "10"))
    MAX_RETRIES: int = int(os.getenv("MAX_RETRIES", "3"))

    # Polling
    POLL_INTERVAL: int = int(os.getenv("POLL_INTERVAL", "1800"))

    # Storage
    DB_PATH: str = os.getenv("DB_PATH", str(DATA_DIR / "shopwatch.db"))
    NOTIFICATION_RETENTION_DAYS: int = int(os.getenv("NOTIFICATION_RETENTION_DAYS", "30"))
    NOTIFICATION_MAX_RECORDS: int = int(os.getenv("NOTIFICATION_MAX_RECORDS", "100"))

    # Notifications
    NOTIFY_RATE_LIMIT_MINUTES: int = int(os.getenv("NOTIFY_RATE_LIMIT_MINUTES", "60"))
    NOTIFY_MIN_PRICE: str | None = os.getenv("NOTIFY_MIN_PRICE")
    NOTIFY_KEYWORDS: str | None = os.getenv("NOTIFY_KEYWORDS")
    NOTIFY_COMMAND: str | None = os.getenv("NOTIFY_COMMAND")
    NOTIFY_TARGET: str | None = os.getenv("NOTIFY_TARGET")
    NOTIFY_WEBHOOK_URL: str | None = os.getenv("NOTIFY_WEBHOOK_URL")
    NOTIFY_TIMEOUT: float = float(os.getenv("NOTIFY_TIMEOUT", "10"))

    # Gateway
    IPC_SOCKET_PATH: str = os.getenv("IPC_SOCKET_PATH", _default_socket_path())

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE: str = os.getenv("LOG_FILE", str(LOG_DIR / "app.log"))

    @classmethod
    def validate(cls) -> None:
        """Validate required configuration."""
        errors = []
        if not cls.STORE_URL.startswith(("http://", "https://")):
            errors.append(f"STORE_URL must be an http(s) URL (got: {cls.STORE_URL!r})")
        if not 10 <= cls.POLL_INTERVAL <= 86400:
            errors.append(f"POLL_INTERVAL must be between 10 and 86400 seconds (got: {cls.POLL_INTERVAL})")
        if not 1 <= cls.FETCH_TIMEOUT <= 60:
            errors.append(f"FETCH_TIMEOUT must be between 1 and 60 seconds (got: {cls.FETCH_TIMEOUT})")
        if cls.NOTIFY_RATE_LIMIT_MINUTES < 0:
            errors.append("NOTIFY_RATE_LIMIT_MINUTES must not be negative")
        if cls.NOTIFY_COMMAND and not cls.NOTIFY_TARGET:
            errors.append("NOTIFY_TARGET is required when NOTIFY_COMMAND is set")
        if errors:
            raise ValueError(f"Configuration errors: {', '.join(errors)}")

    @classmethod
    def ensure_dirs(cls) -> None:
        """Create the directories the daemon writes into."""
        for path in (Path(cls.DB_PATH).parent, Path(cls.LOG_FILE).parent, PID_FILE.parent):
            path.mkdir(parents=True, exist_ok=True)


config = Config()
