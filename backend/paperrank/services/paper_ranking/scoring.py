"""Relevance scoring: lexical keyword matching and embedding similarity."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Sequence

import numpy as np

from paperrank.services.embedding_service import EmbeddingService

from .config import RankingConfig
from .models import CandidatePaper, ScoredResult, normalize_query

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG = RankingConfig()


def _clamp(value: float) -> float:
    return float(min(1.0, max(0.0, value)))


def query_tokens(query: str, config: Optional[RankingConfig] = None) -> List[str]:
    config = config or _DEFAULT_CONFIG
    return [t for t in normalize_query(query).split(" ") if len(t) >= config.min_token_length]


def compute_lexical_score(
    query: str,
    paper: CandidatePaper,
    *,
    config: Optional[RankingConfig] = None,
    current_year: Optional[int] = None,
) -> float:
    """Keyword relevance of ``paper`` for ``query`` in [0, 1].

    Starts at the base score, adds a bonus when the whole query appears in
    the title, adds weighted title/abstract token match ratios and a small
    bonus for recent papers.
    """
    config = config or _DEFAULT_CONFIG
    normalized_query = normalize_query(query)
    title = normalize_query(paper.title)
    abstract = (paper.abstract or "").lower()

    score = config.base_score

    if normalized_query and normalized_query in title:
        score += config.exact_title_bonus

    tokens = query_tokens(normalized_query, config)
    if tokens:
        title_hits = sum(1 for token in tokens if token in title)
        abstract_hits = sum(1 for token in tokens if token in abstract) if abstract else 0
        score += config.title_token_weight * (title_hits / len(tokens))
        score += config.abstract_token_weight * (abstract_hits / len(tokens))

    year_now = current_year if current_year is not None else datetime.now().year
    if paper.year and 0 <= year_now - paper.year <= config.recency_years:
        score += config.recency_bonus

    return _clamp(score)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity; 0.0 for empty, mismatched or zero-magnitude vectors."""
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0

    a_arr = np.asarray(a, dtype=float)
    b_arr = np.asarray(b, dtype=float)

    norm_a = np.linalg.norm(a_arr)
    norm_b = np.linalg.norm(b_arr)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    return float(np.dot(a_arr, b_arr) / (norm_a * norm_b))


@dataclass
class SemanticScores:
    scores: List[float] = field(default_factory=list)
    fallbacks: int = 0  # papers that received the default score
    provider_failed: bool = False


async def score_semantic(
    query: str,
    papers: Sequence[CandidatePaper],
    embedder,
    *,
    config: Optional[RankingConfig] = None,
) -> SemanticScores:
    """Embed the query and papers in one batch and score papers by cosine similarity.

    Embedding spaces such as OpenAI's are not guaranteed non-negative, so
    negative cosines are clamped to 0. A failed batch gives every paper the
    default midpoint; a missing or malformed vector defaults that paper only.
    """
    config = config or _DEFAULT_CONFIG
    if not papers:
        return SemanticScores()

    default = config.default_semantic_score
    texts = [query] + [
        EmbeddingService.prepare_paper_text(p.title, p.abstract, max_abstract_len=config.max_abstract_chars)
        for p in papers
    ]
    try:
        vectors = await asyncio.wait_for(embedder.embed_batch(texts), timeout=config.embedding_timeout)
    except Exception as exc:
        logger.warning("Embedding request failed for %s papers: %s", len(papers), exc)
        return SemanticScores(scores=[default] * len(papers), fallbacks=len(papers), provider_failed=True)

    vectors = list(vectors) if vectors is not None else []
    query_vector = vectors[0] if vectors else None
    if query_vector is None or len(query_vector) == 0:
        logger.warning("Embedding provider returned no query vector")
        return SemanticScores(scores=[default] * len(papers), fallbacks=len(papers), provider_failed=True)

    scores: List[float] = []
    fallbacks = 0
    for i in range(len(papers)):
        vector = vectors[i + 1] if i + 1 < len(vectors) else None
        if vector is None or len(vector) == 0 or len(vector) != len(query_vector):
            scores.append(default)
            fallbacks += 1
            continue
        scores.append(_clamp(cosine_similarity(query_vector, vector)))

    if fallbacks:
        logger.info("Semantic scoring used the default for %s/%s papers", fallbacks, len(papers))
    return SemanticScores(scores=scores, fallbacks=fallbacks)


async def compute_semantic_scores(
    query: str,
    papers: Sequence[CandidatePaper],
    embedder,
    *,
    config: Optional[RankingConfig] = None,
) -> List[float]:
    """Semantic similarity per paper, same length and order as ``papers``."""
    result = await score_semantic(query, papers, embedder, config=config)
    return result.scores


def combine_scores(
    lexical: float,
    semantic: float,
    *,
    semantic_enabled: bool,
    config: Optional[RankingConfig] = None,
) -> float:
    config = config or _DEFAULT_CONFIG
    if not semantic_enabled:
        return _clamp(lexical)
    return _clamp(config.semantic_weight * semantic + config.lexical_weight * lexical)


def sort_results(results: List[ScoredResult]) -> List[ScoredResult]:
    """Descending by combined score, then citations; ties keep arrival order."""
    return sorted(
        results,
        key=lambda r: (-r.combined_score, -r.paper.citation_count),
    )
