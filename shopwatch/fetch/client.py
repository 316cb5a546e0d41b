"""HTTP client for the storefront catalog with retries and error translation."""
import logging
from typing import Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from shopwatch.catalog.models import CatalogItem
from shopwatch.catalog.normalizer import normalize_products
from shopwatch.config import config
from shopwatch.fetch.errors import (
    FetchAuthError,
    FetchError,
    FetchRateLimitError,
    FetchServerError,
    FetchTimeoutError,
    FetchUnreachableError,
)
from shopwatch.fetch.session import SessionManager

logger = logging.getLogger(__name__)

PRODUCTS_PATH = "/products.json"


def is_retryable_error(exc: BaseException) -> bool:
    """Timeouts, network errors and 5xx responses are retried."""
    if isinstance(exc, (httpx.TimeoutException, httpx.NetworkError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return False


def _log_retry(retry_state) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.info(f"Retry attempt {retry_state.attempt_number} for catalog fetch: {exc}")


class CatalogClient:
    """Fetches and normalizes the remote catalog."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        session_manager: Optional[SessionManager] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or config.STORE_URL).rstrip("/")
        self.session_manager = session_manager or SessionManager()
        self.timeout = timeout or config.FETCH_TIMEOUT
        self.client = httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=True,
            transport=transport,
            headers={"User-Agent": config.USER_AGENT, "Accept": "application/json"},
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self) -> None:
        await self.client.aclose()

    async def fetch_catalog(self) -> list[CatalogItem]:
        """Fetch the catalog, translating transport failures into FetchError."""
        logger.info("Fetching catalog from storefront")
        cookie_header = await self.session_manager.get_cookie_header()

        try:
            payload = await self._get_products(cookie_header)
        except httpx.HTTPStatusError as e:
            raise self._translate_status(e.response) from e
        except httpx.TimeoutException as e:
            raise FetchTimeoutError("Request timeout. Please check your internet connection.") from e
        except httpx.NetworkError as e:
            raise FetchUnreachableError(f"Cannot reach storefront at {self.base_url}: {e}") from e
        except ValueError as e:
            raise FetchError(f"Invalid catalog response: {e}") from e

        raw_products = payload.get("products") if isinstance(payload, dict) else None
        if raw_products is None:
            raise FetchError("Invalid catalog response: missing 'products'")

        items = normalize_products(raw_products, self.base_url)
        logger.info(f"Fetched {len(items)} products successfully")
        return items

    @retry(
        stop=stop_after_attempt(config.MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=_log_retry,
        reraise=True,
    )
    async def _get_products(self, cookie_header: str) -> dict:
        response = await self.client.get(
            f"{self.base_url}{PRODUCTS_PATH}",
            headers={"Cookie": cookie_header},
        )
        response.raise_for_status()
        return response.json()

    def _translate_status(self, response: httpx.Response) -> FetchError:
        status = response.status_code
        if status in (401, 403):
            return FetchAuthError("Authentication failed. Refresh the saved session cookies.")
        if status == 429:
            return FetchRateLimitError("Rate limit exceeded. Please wait before retrying.")
        if status >= 500:
            return FetchServerError(f"Storefront server error ({status}). Please try again later.", status)
        return FetchError(f"HTTP {status}: {response.reason_phrase}", status)
