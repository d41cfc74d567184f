"""Error types raised by the Airtable client and the scan engine."""

from __future__ import annotations

from typing import Any, Optional


class ApiError(RuntimeError):
    """Non-2xx response from the Airtable API."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Optional[Any] = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class NotFoundError(ApiError):
    """The resource no longer exists upstream (404 or NOT_FOUND body)."""


class ForbiddenError(ApiError):
    """The token or principal is not allowed to perform the call (403)."""


class RateLimitedError(ApiError):
    """Airtable rate limit hit (429)."""


class InvalidTransition(RuntimeError):
    """A base scan tried to move between states it is not allowed to."""
