"""Configuration objects used by the ranking engine."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class RankingConfig:
    """Centralized scoring policy, limits and timeouts for ranking."""

    # Combined score weights
    semantic_weight: float = 0.7
    lexical_weight: float = 0.3
    default_semantic_score: float = 0.5

    # Lexical scoring
    base_score: float = 0.5
    exact_title_bonus: float = 0.3
    title_token_weight: float = 0.15
    abstract_token_weight: float = 0.05
    recency_bonus: float = 0.05
    recency_years: int = 3
    min_token_length: int = 3

    # Limits
    max_limit: int = 100
    candidate_multiplier: int = 2
    min_candidates_per_source: int = 10
    max_candidates_per_source: int = 50

    # Timeouts (seconds)
    search_timeout: float = 15.0
    request_timeout: float = 10.0
    embedding_timeout: float = 20.0

    # Embedding input
    max_abstract_chars: int = 2000

    # Result cache
    cache_ttl_seconds: float = 3600.0
    cache_max_size: int = 1000

    # Retry
    max_retries: int = 3
    initial_backoff_seconds: float = 1.0
    max_backoff_seconds: float = 8.0

    local_owner_id: str = "dev-user"

    def per_source_budget(self, limit: int) -> int:
        """Candidates requested from each source; larger than ``limit`` to leave room for dedup."""
        wanted = limit * self.candidate_multiplier
        return max(self.min_candidates_per_source, min(wanted, self.max_candidates_per_source))

    @classmethod
    def from_settings(cls, settings) -> "RankingConfig":
        return cls(
            max_limit=settings.RANKING_MAX_LIMIT,
            search_timeout=settings.RANKING_SEARCH_TIMEOUT,
            request_timeout=settings.RANKING_REQUEST_TIMEOUT,
            embedding_timeout=settings.RANKING_EMBEDDING_TIMEOUT,
            cache_ttl_seconds=settings.RANKING_CACHE_TTL_SECONDS,
            cache_max_size=settings.RANKING_CACHE_MAX_SIZE,
            local_owner_id=settings.RANKING_LOCAL_OWNER_ID,
        )
