"""Retry-with-backoff policy shared by uploads and, optionally, synthesis."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    ReadTimeoutError,
)

from ttschunker.errors import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# S3 error codes that signal a temporary condition on the service side.
TRANSIENT_S3_CODES = frozenset(
    {
        "InternalError",
        "ServiceUnavailable",
        "SlowDown",
        "RequestTimeout",
        "RequestTimeTooSkewed",
        "Throttling",
        "ThrottlingException",
    }
)


def is_transient_storage_error(exc: BaseException) -> bool:
    """Classify an upload failure: network, timeouts and 5xx are transient.

    Auth/permission errors, missing buckets and malformed keys are permanent.
    """
    if isinstance(exc, ClientError):
        error = exc.response.get("Error", {})
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0)
        return error.get("Code") in TRANSIENT_S3_CODES or status >= 500
    return isinstance(
        exc,
        (
            EndpointConnectionError,
            ConnectionClosedError,
            ReadTimeoutError,
            ConnectTimeoutError,
            asyncio.TimeoutError,
            ConnectionError,
        ),
    )


def is_retryable_provider_error(exc: BaseException) -> bool:
    return isinstance(exc, ProviderError) and exc.retryable


@dataclass(frozen=True)
class RetryPolicy:
    """``max_attempts`` tries with delays ``base_delay * 2**(n-1)`` capped at ``max_delay``."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    is_retryable: Callable[[BaseException], bool] = field(default=is_transient_storage_error)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        """Backoff to wait after failed attempt number *attempt* (1-based)."""
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        description: str = "operation",
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        on_retry: Callable[[int, BaseException], None] | None = None,
    ) -> T:
        """Call *fn* until it succeeds, a permanent error occurs or attempts run out.

        The last underlying exception is re-raised unchanged; callers wrap it.
        """
        for attempt in range(1, self.max_attempts + 1):
            logger.info(f"{description}: attempt {attempt}/{self.max_attempts}")
            try:
                return await fn()
            except Exception as e:
                if not self.is_retryable(e):
                    logger.error(f"{description}: permanent failure on attempt {attempt}: {e}")
                    raise
                if attempt == self.max_attempts:
                    logger.error(f"{description}: failed after {attempt} attempts: {e}")
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    f"{description}: attempt {attempt} failed ({e}); retrying in {delay:.2f}s"
                )
                if on_retry:
                    on_retry(attempt, e)
                await sleep(delay)
        raise AssertionError("unreachable")  # pragma: no cover
