"""Paper ranking package exposing the scoring, caching and source building blocks."""

from .cache import ResultCache
from .config import RankingConfig
from .errors import EmbeddingUnavailable, InvalidArgument, RankingError, SourceUnavailable
from .models import CandidatePaper, PaperSource, RankedResultSet, ScoredResult, SourceStats

__all__ = [
    "CandidatePaper",
    "EmbeddingUnavailable",
    "InvalidArgument",
    "PaperSource",
    "RankedResultSet",
    "RankingConfig",
    "RankingError",
    "ResultCache",
    "ScoredResult",
    "SourceStats",
    "SourceUnavailable",
]
