"""Retry wrapper for every remote call the exporter makes."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

import requests

from scripts.airtable_export.errors import RateLimitedError

logger = logging.getLogger("export.retry")

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (requests.Timeout, RateLimitedError)


class RetryExecutor:
    """Run an async operation, retrying transient failures with a fixed backoff.

    ``operation`` is a zero-argument callable returning a fresh awaitable on
    every call. Timeouts and rate limits are retried up to ``max_attempts``
    attempts in total; every other exception is re-raised unchanged on the
    first occurrence.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        backoff_seconds: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self._sleep = sleep

    async def run(self, operation: Callable[[], Awaitable[T]], label: str) -> T:
        attempt = 1
        while True:
            try:
                return await operation()
            except TRANSIENT_ERRORS as exc:
                if attempt >= self.max_attempts:
                    logger.warning(
                        "Too many retries for %s, giving up",
                        label,
                        extra={"attempt": attempt},
                    )
                    raise
                logger.warning(
                    "Transient error while accessing %s: %r. Sleeping %.0fs and retrying",
                    label,
                    exc,
                    self.backoff_seconds,
                    extra={"attempt": attempt},
                )
                await self._sleep(self.backoff_seconds)
                attempt += 1
