"""Bounded retry with exponential backoff for flaky literature APIs."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, FrozenSet, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES: FrozenSet[int] = frozenset({429, 500, 502, 503, 504})
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
MAX_BACKOFF_SECONDS = 8.0


class RetryableError(Exception):
    """Raised by an attempt that may succeed if repeated."""

    def __init__(
        self,
        message: str = "",
        *,
        status: Optional[int] = None,
        retry_after: Optional[float] = None,
        timeout: bool = False,
    ):
        super().__init__(message or (f"HTTP {status}" if status else "transient failure"))
        self.status = status
        self.retry_after = retry_after
        self.timeout = timeout


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Return the Retry-After header in seconds; HTTP-date values are ignored."""
    if value is None:
        return None
    try:
        seconds = float(str(value).strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


@dataclass
class RetryPolicy:
    """How many times to retry and how long to wait between attempts."""

    max_retries: int = MAX_RETRIES
    initial_backoff: float = INITIAL_BACKOFF_SECONDS
    max_backoff: float = MAX_BACKOFF_SECONDS
    multiplier: float = 2.0
    retry_statuses: FrozenSet[int] = field(default_factory=lambda: RETRYABLE_STATUS_CODES)
    respect_retry_after: bool = True

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            initial_backoff=config.initial_backoff_seconds,
            max_backoff=config.max_backoff_seconds,
        )

    def should_retry(self, status: Optional[int], attempt: int) -> bool:
        """``attempt`` is zero-based; status ``None`` means a transport failure."""
        if attempt >= self.max_retries:
            return False
        return status is None or status in self.retry_statuses

    def compute_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        if self.respect_retry_after and retry_after is not None:
            return min(self.max_backoff, retry_after)
        return min(self.max_backoff, self.initial_backoff * (self.multiplier ** attempt))


async def retry_async(
    operation: Callable[[int], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
    budget_seconds: Optional[float] = None,
    deadline: Optional[float] = None,
    label: str = "request",
) -> T:
    """Run ``operation(attempt)`` until it returns or the retry budget is spent.

    Only ``RetryableError`` triggers another attempt; anything else propagates
    immediately. When the budget is spent the last ``RetryableError`` is
    re-raised. ``deadline`` is an absolute ``clock()`` value and takes
    precedence over ``budget_seconds``, so several calls can share one budget.
    """
    if deadline is None and budget_seconds is not None:
        deadline = clock() + budget_seconds
    attempt = 0
    while True:
        try:
            return await operation(attempt)
        except RetryableError as exc:
            if not policy.should_retry(exc.status, attempt):
                logger.warning("%s failed after %s attempts: %s", label, attempt + 1, exc)
                raise
            delay = policy.compute_delay(attempt, exc.retry_after)
            if deadline is not None and clock() + delay > deadline:
                logger.warning("%s out of time budget after %s attempts: %s", label, attempt + 1, exc)
                raise
            logger.warning(
                "%s attempt %s/%s failed: %s. Retrying in %.2fs",
                label, attempt + 1, policy.max_retries + 1, exc, delay,
            )
            await sleep(delay)
            attempt += 1
