"""Tests for saved session cookie loading."""
import json
import time

import pytest

from shopwatch.fetch.errors import FetchAuthError
from shopwatch.fetch.session import SessionManager


async def test_session_cookie_takes_precedence(tmp_path):
    """An explicit cookie string is used as-is."""
    manager = SessionManager(cookies_file=str(tmp_path / "missing.json"), session_cookie="a=1")
    assert await manager.get_cookie_header() == "a=1"


async def test_cookie_header_object(tmp_path):
    """A {"cookie": ...} file provides the header directly."""
    path = tmp_path / "cookies.json"
    path.write_text(json.dumps({"cookie": "a=1; b=2"}))
    manager = SessionManager(cookies_file=str(path), session_cookie="")
    assert await manager.get_cookie_header() == "a=1; b=2"


async def test_cookie_list_skips_expired(tmp_path):
    """Expired cookies are left out of the header."""
    path = tmp_path / "cookies.json"
    path.write_text(json.dumps([
        {"name": "live", "value": "1", "expires": time.time() + 3600},
        {"name": "old", "value": "2", "expires": time.time() - 3600},
        {"name": "session", "value": "3"},
    ]))
    manager = SessionManager(cookies_file=str(path), session_cookie="")
    assert await manager.get_cookie_header() == "live=1; session=3"


async def test_all_cookies_expired(tmp_path):
    """Only expired cookies means the session has expired."""
    path = tmp_path / "cookies.json"
    path.write_text(json.dumps([{"name": "old", "value": "2", "expires": 1}]))
    manager = SessionManager(cookies_file=str(path), session_cookie="")
    with pytest.raises(FetchAuthError, match="expired"):
        await manager.get_cookie_header()


async def test_missing_cookies_file(tmp_path):
    """No cookies at all is an auth failure."""
    manager = SessionManager(cookies_file=str(tmp_path / "none.json"), session_cookie="")
    with pytest.raises(FetchAuthError):
        await manager.get_cookie_header()


async def test_unreadable_cookies_file(tmp_path):
    """A corrupt file is an auth failure."""
    path = tmp_path / "cookies.json"
    path.write_text("{not json")
    manager = SessionManager(cookies_file=str(path), session_cookie="")
    with pytest.raises(FetchAuthError):
        await manager.get_cookie_header()
