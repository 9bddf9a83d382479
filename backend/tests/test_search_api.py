"""
API tests for the hybrid search endpoints.
"""

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from paperrank.core.config import settings
from paperrank.core.rate_limiter import limiter
from paperrank.main import create_app
from paperrank.services.paper_ranking.errors import InvalidArgument
from paperrank.services.paper_ranking.metrics import get_ranking_metrics_collector
from paperrank.services.paper_ranking.models import (
    CandidatePaper,
    RankedResultSet,
    ScoredResult,
    SourceStats,
)


class _StubRanker:
    def __init__(self, result_set=None):
        self.result_set = result_set or RankedResultSet()
        self.calls = []
        self.cleared = 0

    async def rank_detached(self, query, limit=20, use_cache=True):
        self.calls.append((query, limit, use_cache))
        if not query.strip():
            raise InvalidArgument("query must be a non-empty string")
        if limit <= 0:
            raise InvalidArgument("limit must be positive")
        return self.result_set

    async def clear_cache(self):
        self.cleared += 1


@pytest.fixture
def ranker():
    paper = CandidatePaper.create(
        id="1706.03762",
        title="Attention Is All You Need",
        source="arxiv",
        authors=["Ashish Vaswani"],
        year=2017,
        citation_count=100,
    )
    return _StubRanker(RankedResultSet(
        results=[ScoredResult(paper, lexical_score=0.95, semantic_score=0.8, combined_score=0.845)],
        total_considered=12,
        served_from_cache=False,
        source_stats=[SourceStats("arxiv", count=7, status="success"), SourceStats("pubmed", status="timeout")],
        semantic_mode="hybrid",
    ))


@pytest.fixture
def client(ranker):
    limiter.reset()
    app = create_app(build_service=False)
    app.state.ranking_service = SimpleNamespace(ranker=ranker)
    with TestClient(app) as test_client:
        yield test_client


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_hybrid_search_returns_ranked_results(client, ranker):
    response = client.get("/api/v1/search/hybrid", params={"q": "attention", "limit": 5})

    assert response.status_code == 200
    body = response.json()
    assert body["total"] == 12
    assert body["cached"] is False
    assert body["semantic_mode"] == "hybrid"
    assert body["all_sources_failed"] is False
    assert [s["status"] for s in body["sources"]] == ["success", "timeout"]

    [result] = body["results"]
    assert result["id"] == "1706.03762"
    assert result["authors"] == ["Ashish Vaswani"]
    assert result["combined_score"] == pytest.approx(0.845)
    assert ranker.calls == [("attention", 5, True)]


def test_hybrid_search_defaults_and_cache_flag(client, ranker):
    client.get("/api/v1/search/hybrid", params={"q": "attention", "cache": "false"})
    assert ranker.calls == [("attention", 20, False)]


def test_blank_query_is_a_bad_request(client):
    response = client.get("/api/v1/search/hybrid", params={"q": "   "})
    assert response.status_code == 400
    assert "query" in response.json()["detail"]


def test_missing_query_is_a_bad_request(client):
    response = client.get("/api/v1/search/hybrid")
    assert response.status_code == 400


def test_non_positive_limit_is_a_bad_request(client):
    response = client.get("/api/v1/search/hybrid", params={"q": "attention", "limit": 0})
    assert response.status_code == 400


def test_non_integer_limit_fails_validation(client):
    response = client.get("/api/v1/search/hybrid", params={"q": "attention", "limit": "many"})
    assert response.status_code == 422


def test_clear_cache(client, ranker):
    response = client.delete("/api/v1/search/cache")
    assert response.status_code == 200
    assert response.json() == {"ok": True}
    assert ranker.cleared == 1


def test_metrics_disabled(client, monkeypatch):
    monkeypatch.setattr(settings, "ENABLE_METRICS", False)
    body = client.get("/api/v1/search/metrics").json()
    assert body == {"ok": True, "enabled": False, "data": {}}


def test_metrics_enabled(client, monkeypatch):
    monkeypatch.setattr(settings, "ENABLE_METRICS", True)
    collector = get_ranking_metrics_collector()
    collector.reset()
    collector.record_cache_hit()

    body = client.get("/api/v1/search/metrics").json()

    assert body["enabled"] is True
    assert body["data"]["cache_hits_total"] == 1
    assert body["data"]["cache_hit_rate"] == 1.0
    collector.reset()


def test_service_not_initialized_is_unavailable():
    limiter.reset()
    app = create_app(build_service=False)
    with TestClient(app) as test_client:
        response = test_client.get("/api/v1/search/hybrid", params={"q": "attention"})
    assert response.status_code == 503
