"""Session cookie loading for authenticated storefront requests."""
import logging
import time
from pathlib import Path
from typing import Optional

import aiofiles
import orjson

from shopwatch.config import config
from shopwatch.fetch.errors import FetchAuthError

logger = logging.getLogger(__name__)


class SessionManager:
    """Provides the Cookie header for storefront requests.

    Cookies come from SESSION_COOKIE or from a JSON file written by the
    credential extraction step, either ``{"cookie": "a=b; c=d"}`` or a list of
    ``{"name", "value", "expires"}`` objects.
    """

    def __init__(self, cookies_file: Optional[str] = None, session_cookie: Optional[str] = None):
        self.cookies_file = Path(cookies_file or config.COOKIES_FILE)
        self._session_cookie = session_cookie if session_cookie is not None else config.SESSION_COOKIE

    async def get_cookie_header(self) -> str:
        """Return a Cookie header value or raise FetchAuthError."""
        if self._session_cookie:
            return self._session_cookie

        if not self.cookies_file.exists():
            raise FetchAuthError("No session cookies found. Save cookies before starting the monitor.")

        try:
            async with aiofiles.open(self.cookies_file, "rb") as f:
                data = orjson.loads(await f.read())
        except (OSError, orjson.JSONDecodeError) as e:
            logger.error(f"Failed to read cookies file {self.cookies_file}: {e}")
            raise FetchAuthError(f"Unreadable cookies file: {self.cookies_file}") from e

        header = self._header_from_data(data)
        if not header:
            raise FetchAuthError("Cookies file contains no usable cookies")
        return header

    def _header_from_data(self, data) -> str:
        if isinstance(data, dict):
            return str(data.get("cookie") or "")

        if isinstance(data, list):
            now = time.time()
            parts = []
            expired = []
            for cookie in data:
                if not isinstance(cookie, dict) or not cookie.get("name"):
                    continue
                expires = cookie.get("expires") or 0
                if expires and expires < now:
                    expired.append(cookie["name"])
                    continue
                parts.append(f"{cookie['name']}={cookie.get('value', '')}")
            if expired and not parts:
                raise FetchAuthError("Session expired. Refresh the saved cookies.")
            return "; ".join(parts)

        return ""
