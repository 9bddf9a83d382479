"""Error taxonomy for the ranking engine.

Only ``InvalidArgument`` is meant to reach callers of ``HybridRanker.rank``;
the other errors are raised and absorbed inside the engine.
"""

from __future__ import annotations

from typing import Optional


class RankingError(Exception):
    """Base class for ranking engine errors."""


class InvalidArgument(RankingError, ValueError):
    """Raised for caller input problems (blank query, bad limit)."""


class SourceUnavailable(RankingError):
    """A single source failed (network, timeout, bad payload, rate limit)."""

    def __init__(self, source: str, message: str, *, status: str = "error", http_status: Optional[int] = None):
        super().__init__(f"{source}: {message}")
        self.source = source
        self.status = status
        self.http_status = http_status


class RateLimitError(SourceUnavailable):
    """Raised when an API keeps returning 429 after the retry budget is spent."""

    def __init__(self, source: str, message: str = "API rate limited"):
        super().__init__(source, message, status="rate_limited", http_status=429)


class EmbeddingUnavailable(RankingError):
    """The embedding provider could not produce vectors."""
