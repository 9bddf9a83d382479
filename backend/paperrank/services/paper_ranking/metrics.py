from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict

from .models import RankedResultSet


logger = logging.getLogger(__name__)


@dataclass
class RankingMetricsCollector:
    """Thread-safe in-process counters for ranking runs."""

    log_every_n_runs: int = 50
    _lock: Lock = field(default_factory=Lock, init=False, repr=False)
    _counts: Dict[str, int] = field(
        default_factory=lambda: {
            "rank_requests_total": 0,
            "cache_hits_total": 0,
            "cache_misses_total": 0,
            "all_sources_failed_total": 0,
            "embedding_failures_total": 0,
        },
        init=False,
        repr=False,
    )
    _sources: Dict[str, Dict[str, int]] = field(default_factory=dict, init=False, repr=False)

    def record_cache_hit(self) -> None:
        with self._lock:
            self._counts["rank_requests_total"] += 1
            self._counts["cache_hits_total"] += 1

    def record_run(self, result_set: RankedResultSet) -> None:
        """Record a ranking run that went to the sources."""
        with self._lock:
            self._counts["rank_requests_total"] += 1
            self._counts["cache_misses_total"] += 1
            if result_set.all_sources_failed:
                self._counts["all_sources_failed_total"] += 1
            if result_set.semantic_mode == "degraded":
                self._counts["embedding_failures_total"] += 1
            for stats in result_set.source_stats:
                per_status = self._sources.setdefault(stats.source, {})
                per_status[stats.status] = per_status.get(stats.status, 0) + 1
            runs = self._counts["cache_misses_total"]

        if self.log_every_n_runs > 0 and runs % self.log_every_n_runs == 0:
            logger.info("[RankingMetrics] %s", json.dumps(self.snapshot()))

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            counts = dict(self._counts)
            sources = {name: dict(statuses) for name, statuses in self._sources.items()}

        total = counts["rank_requests_total"]
        hit_rate = counts["cache_hits_total"] / total if total else 0.0
        return {
            **counts,
            "cache_hit_rate": round(hit_rate, 4),
            "sources": sources,
        }

    def reset(self) -> None:
        with self._lock:
            for key in self._counts:
                self._counts[key] = 0
            self._sources.clear()


_GLOBAL_COLLECTOR = RankingMetricsCollector()


def get_ranking_metrics_collector() -> RankingMetricsCollector:
    return _GLOBAL_COLLECTOR
