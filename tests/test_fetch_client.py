"""Tests for the storefront HTTP client."""
import httpx
import pytest
from tenacity import wait_none

from shopwatch.fetch.client import CatalogClient
from shopwatch.fetch.errors import (
    FetchAuthError,
    FetchError,
    FetchRateLimitError,
    FetchServerError,
    FetchTimeoutError,
    FetchUnreachableError,
)
from shopwatch.fetch.session import SessionManager

PRODUCTS = {
    "products": [
        {
            "id": 1,
            "title": "Desk Lamp",
            "handle": "desk-lamp",
            "variants": [{"id": 11, "title": "Default", "price": "25.00", "inventory_quantity": 2}],
            "images": [],
        }
    ]
}


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(CatalogClient._get_products.retry, "wait", wait_none())


def _client(handler):
    return CatalogClient(
        base_url="https://shop.example.com",
        session_manager=SessionManager(session_cookie="session=abc"),
        transport=httpx.MockTransport(handler),
    )


class Counter:
    def __init__(self, response=None, error=None):
        self.calls = 0
        self.response = response
        self.error = error
        self.requests = []

    def __call__(self, request):
        self.calls += 1
        self.requests.append(request)
        if self.error:
            raise self.error
        return self.response


async def test_fetch_catalog_success():
    """Products are fetched with the session cookie and normalized."""
    handler = Counter(response=httpx.Response(200, json=PRODUCTS))
    async with _client(handler) as client:
        items = await client.fetch_catalog()

    assert [i.id for i in items] == ["1"]
    assert items[0].price == 25.0
    assert items[0].available is True
    assert items[0].url == "https://shop.example.com/products/desk-lamp"
    assert handler.requests[0].url.path == "/products.json"
    assert handler.requests[0].headers["cookie"] == "session=abc"


async def test_unauthorized_is_auth_error():
    """401 maps to FetchAuthError without retrying."""
    handler = Counter(response=httpx.Response(401))
    async with _client(handler) as client:
        with pytest.raises(FetchAuthError):
            await client.fetch_catalog()
    assert handler.calls == 1


async def test_rate_limited():
    """429 maps to FetchRateLimitError without retrying."""
    handler = Counter(response=httpx.Response(429))
    async with _client(handler) as client:
        with pytest.raises(FetchRateLimitError):
            await client.fetch_catalog()
    assert handler.calls == 1


async def test_server_error_is_retried():
    """5xx responses are retried before failing."""
    handler = Counter(response=httpx.Response(503))
    async with _client(handler) as client:
        with pytest.raises(FetchServerError) as exc_info:
            await client.fetch_catalog()
    assert exc_info.value.status_code == 503
    assert handler.calls == CatalogClient._get_products.retry.stop.max_attempt_number


async def test_timeout():
    """Timeouts are retried then reported."""
    handler = Counter(error=httpx.ReadTimeout("slow"))
    async with _client(handler) as client:
        with pytest.raises(FetchTimeoutError):
            await client.fetch_catalog()
    assert handler.calls > 1


async def test_unreachable():
    """Connection failures are reported as unreachable."""
    handler = Counter(error=httpx.ConnectError("refused"))
    async with _client(handler) as client:
        with pytest.raises(FetchUnreachableError):
            await client.fetch_catalog()


async def test_missing_products_key():
    """A payload without products is invalid."""
    handler = Counter(response=httpx.Response(200, json={"items": []}))
    async with _client(handler) as client:
        with pytest.raises(FetchError, match="products"):
            await client.fetch_catalog()


async def test_invalid_json():
    """A non-JSON body is invalid."""
    handler = Counter(response=httpx.Response(200, content=b"<html>login</html>"))
    async with _client(handler) as client:
        with pytest.raises(FetchError):
            await client.fetch_catalog()


async def test_recovers_after_transient_failure():
    """A retry that succeeds returns the catalog."""
    responses = [httpx.Response(500), httpx.Response(200, json=PRODUCTS)]

    def handler(request):
        return responses.pop(0)

    async with _client(handler) as client:
        items = await client.fetch_catalog()
    assert len(items) == 1
