"""Errors raised by the catalog fetch client."""
from typing import Optional


class FetchError(Exception):
    """Catalog fetch failed; the poll is treated as failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FetchAuthError(FetchError):
    """Session cookie missing, expired or rejected."""

    def __init__(self, message: str):
        super().__init__(message, status_code=401)


class FetchRateLimitError(FetchError):
    def __init__(self, message: str):
        super().__init__(message, status_code=429)


class FetchServerError(FetchError):
    pass


class FetchTimeoutError(FetchError):
    pass


class FetchUnreachableError(FetchError):
    pass
