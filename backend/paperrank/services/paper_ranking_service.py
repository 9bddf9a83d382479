"""
Paper Ranking Service - hybrid lexical/semantic relevance ranking
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Set, Tuple

import aiohttp

from paperrank.core.config import Settings, get_settings
from paperrank.services.embedding_service import build_embedding_service
from paperrank.services.paper_ranking.cache import ResultCache
from paperrank.services.paper_ranking.config import RankingConfig
from paperrank.services.paper_ranking.errors import InvalidArgument
from paperrank.services.paper_ranking.interfaces import SourceAdapter
from paperrank.services.paper_ranking.metrics import (
    RankingMetricsCollector,
    get_ranking_metrics_collector,
)
from paperrank.services.paper_ranking.models import (
    CandidatePaper,
    PaperSource,
    RankedResultSet,
    ScoredResult,
    SourceStats,
)
from paperrank.services.paper_ranking.repository import SqlAlchemyPaperRepository
from paperrank.services.paper_ranking.scoring import (
    combine_scores,
    compute_lexical_score,
    score_semantic,
    sort_results,
)
from paperrank.services.paper_ranking.searchers import (
    ArxivSearcher,
    LocalLibrarySearcher,
    PubMedSearcher,
    SemanticScholarSearcher,
)

logger = logging.getLogger(__name__)


class HybridRanker:
    """Fans a query out to every source, merges, scores and caches the results."""

    def __init__(
        self,
        adapters: List[SourceAdapter],
        *,
        cache: ResultCache,
        embedding_provider=None,
        config: Optional[RankingConfig] = None,
        metrics: Optional[RankingMetricsCollector] = None,
    ):
        self.adapters = list(adapters)
        self.cache = cache
        self.embedding_provider = embedding_provider
        self.config = config or RankingConfig()
        self.metrics = metrics
        self._detached: Set[asyncio.Task] = set()

    def _validate(self, query: Any, limit: Any) -> Tuple[str, int]:
        if not isinstance(query, str) or not query.strip():
            raise InvalidArgument("query must be a non-empty string")
        if isinstance(limit, bool) or not isinstance(limit, int):
            raise InvalidArgument("limit must be an integer")
        if limit <= 0:
            raise InvalidArgument("limit must be positive")
        return query, min(limit, self.config.max_limit)

    async def rank(self, query: str, limit: int = 20, use_cache: bool = True) -> RankedResultSet:
        """Rank candidates from all sources for ``query``.

        Only ``InvalidArgument`` escapes; source and embedding failures
        degrade the result instead.
        """
        query, limit = self._validate(query, limit)
        started = time.time()

        if use_cache:
            entry = await self.cache.get_entry(query, limit)
            if entry is not None:
                logger.info("[Ranking] CACHE HIT query='%s' | limit=%s | results=%s", query, limit, len(entry.results))
                if self.metrics is not None:
                    self.metrics.record_cache_hit()
                return RankedResultSet(
                    results=entry.results,
                    total_considered=entry.total_considered,
                    served_from_cache=True,
                    semantic_mode="cached",
                )

        budget = self.config.per_source_budget(limit)
        logger.info(
            "[Ranking] START query='%s' | limit=%s | per_source=%s | sources=%s",
            query, limit, budget, [a.get_source_name() for a in self.adapters],
        )

        outcomes = await asyncio.gather(*(self._run_adapter(a, query, budget) for a in self.adapters))
        source_stats = [stats for stats, _ in outcomes]
        merged = self._merge([papers for _, papers in outcomes])

        results, semantic_mode = await self._score(query, merged)
        results = sort_results(results)[:limit]

        await self.cache.put(query, limit, results, total_considered=len(merged))

        result_set = RankedResultSet(
            results=results,
            total_considered=len(merged),
            served_from_cache=False,
            source_stats=source_stats,
            semantic_mode=semantic_mode,
        )
        if self.metrics is not None:
            self.metrics.record_run(result_set)

        elapsed = time.time() - started
        status_summary = ", ".join(f"{s.source}={s.status}:{s.count}" for s in source_stats)
        logger.info(
            "[Ranking] COMPLETE query='%s' | %s results of %s candidates | mode=%s | %.2fs | %s",
            query, len(results), len(merged), semantic_mode, elapsed, status_summary,
        )
        if result_set.all_sources_failed:
            logger.warning("[Ranking] every source failed for query='%s'", query)
        return result_set

    async def rank_detached(self, query: str, limit: int = 20, use_cache: bool = True) -> RankedResultSet:
        """Like ``rank`` but the run survives cancellation of the caller.

        An abandoned request still finishes in the background and fills the cache.
        """
        self._validate(query, limit)
        task = asyncio.ensure_future(self.rank(query, limit, use_cache))
        self._detached.add(task)
        task.add_done_callback(self._on_detached_done)
        return await asyncio.shield(task)

    def _on_detached_done(self, task: asyncio.Task) -> None:
        self._detached.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[Ranking] Detached run failed: %s", exc, exc_info=exc)

    async def clear_cache(self) -> None:
        await self.cache.clear()
        logger.info("[Ranking] Result cache cleared")

    async def _run_adapter(self, adapter: SourceAdapter, query: str, budget: int) -> Tuple[SourceStats, List[CandidatePaper]]:
        source_name = adapter.get_source_name()
        source_start = time.time()
        stats = SourceStats(source=source_name)
        papers: List[CandidatePaper] = []
        try:
            outcome = await asyncio.wait_for(
                adapter.search_with_outcome(query, budget),
                timeout=self.config.search_timeout,
            )
            papers = list(outcome.papers or [])
            stats.status = outcome.status
            stats.error = outcome.error
        except asyncio.TimeoutError:
            logger.warning("%s timed out after %.1fs", source_name, self.config.search_timeout)
            stats.status = "timeout"
            stats.error = "Request timed out"
        except Exception as exc:
            logger.error("%s failed: %s", source_name, exc)
            stats.status = "error"
            stats.error = str(exc)[:100]

        stats.count = len(papers)
        stats.elapsed_ms = int((time.time() - source_start) * 1000)
        return stats, papers

    @staticmethod
    def _merge(batches: List[List[CandidatePaper]]) -> List[CandidatePaper]:
        """Concatenate in adapter order; the first paper seen under any key wins.

        A dropped duplicate still contributes its keys, so identity is
        transitive: a local copy matched by title also absorbs a third
        source's record that only shares the duplicate's arXiv id.
        """
        seen: Set[str] = set()
        merged: List[CandidatePaper] = []
        for papers in batches:
            for paper in papers:
                keys = paper.dedup_keys()
                duplicate = any(key in seen for key in keys)
                seen.update(keys)
                if not duplicate:
                    merged.append(paper)
        return merged

    async def _score(self, query: str, papers: List[CandidatePaper]) -> Tuple[List[ScoredResult], str]:
        lexical = [compute_lexical_score(query, p, config=self.config) for p in papers]

        if self.embedding_provider is None:
            results = [
                ScoredResult(
                    paper=p,
                    lexical_score=lex,
                    semantic_score=lex,
                    combined_score=combine_scores(lex, lex, semantic_enabled=False, config=self.config),
                )
                for p, lex in zip(papers, lexical)
            ]
            return results, "lexical"

        semantic = await score_semantic(query, papers, self.embedding_provider, config=self.config)
        mode = "degraded" if semantic.provider_failed else "hybrid"
        results = [
            ScoredResult(
                paper=p,
                lexical_score=lex,
                semantic_score=sem,
                combined_score=combine_scores(lex, sem, semantic_enabled=True, config=self.config),
            )
            for p, lex, sem in zip(papers, lexical, semantic.scores)
        ]
        return results, mode


class PaperRankingService:
    """Owns the ranker together with the HTTP session its adapters share."""

    def __init__(self, ranker: HybridRanker, session: Optional[aiohttp.ClientSession] = None):
        self.ranker = ranker
        self.session = session

    async def close(self):
        """Clean up resources"""
        if self.session is not None and not self.session.closed:
            await self.session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class PaperRankingServiceFactory:
    """Factory for creating the ranking service"""

    @staticmethod
    def build_adapters(
        settings: Settings,
        config: RankingConfig,
        session: aiohttp.ClientSession,
        *,
        session_factory=None,
    ) -> List[SourceAdapter]:
        adapters: List[SourceAdapter] = []
        for name in settings.ranking_source_names:
            if name == PaperSource.LOCAL.value:
                if session_factory is None:
                    from paperrank.database import get_session_factory
                    session_factory = get_session_factory()
                repository = SqlAlchemyPaperRepository(session_factory, min_token_length=config.min_token_length)
                adapters.append(LocalLibrarySearcher(repository, config.local_owner_id))
            elif name == PaperSource.ARXIV.value:
                adapters.append(ArxivSearcher(session, config))
            elif name == PaperSource.PUBMED.value:
                adapters.append(PubMedSearcher(session, config, email=settings.NCBI_EMAIL))
            elif name == PaperSource.SEMANTIC_SCHOLAR.value:
                adapters.append(SemanticScholarSearcher(session, config, settings.SEMANTIC_SCHOLAR_API_KEY))
            else:
                logger.warning("Unknown ranking source %r ignored", name)
        return adapters

    @staticmethod
    async def create(
        settings: Optional[Settings] = None,
        *,
        session_factory=None,
    ) -> PaperRankingService:
        """Create a configured ranking service"""
        settings = settings or get_settings()
        config = RankingConfig.from_settings(settings)

        timeout = aiohttp.ClientTimeout(total=60, connect=10)
        connector = aiohttp.TCPConnector(limit=50, limit_per_host=10)
        session = aiohttp.ClientSession(timeout=timeout, connector=connector)

        adapters = PaperRankingServiceFactory.build_adapters(
            settings, config, session, session_factory=session_factory,
        )
        cache = ResultCache(ttl_seconds=config.cache_ttl_seconds, max_size=config.cache_max_size)
        ranker = HybridRanker(
            adapters,
            cache=cache,
            embedding_provider=build_embedding_service(settings),
            config=config,
            metrics=get_ranking_metrics_collector(),
        )
        logger.info(
            "[Ranking] Service ready | sources=%s | semantic=%s",
            [a.get_source_name() for a in adapters], ranker.embedding_provider is not None,
        )
        return PaperRankingService(ranker=ranker, session=session)


def result_set_to_dict(result_set: RankedResultSet) -> Dict[str, Any]:
    """Serialize a result set for the HTTP layer."""
    return {
        "results": [r.to_dict() for r in result_set.results],
        "total": result_set.total_considered,
        "cached": result_set.served_from_cache,
        "sources": [
            {
                "source": s.source,
                "count": s.count,
                "status": s.status,
                "error": s.error,
                "elapsed_ms": s.elapsed_ms,
            }
            for s in result_set.source_stats
        ],
        "all_sources_failed": result_set.all_sources_failed,
        "semantic_mode": result_set.semantic_mode,
    }
