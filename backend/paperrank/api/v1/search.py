"""
Hybrid search API endpoints
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from paperrank.api.deps import get_hybrid_ranker
from paperrank.core.config import settings
from paperrank.core.rate_limiter import limiter
from paperrank.services.paper_ranking.errors import InvalidArgument
from paperrank.services.paper_ranking.metrics import get_ranking_metrics_collector
from paperrank.services.paper_ranking_service import HybridRanker, result_set_to_dict

logger = logging.getLogger(__name__)

router = APIRouter()


class RankedPaperResponse(BaseModel):
    id: str
    title: str
    source: str
    abstract: str = ""
    authors: List[str] = Field(default_factory=list)
    year: int = 0
    url: Optional[str] = None
    pdf_url: Optional[str] = None
    citation_count: int = 0
    tags: List[str] = Field(default_factory=list)
    doi: Optional[str] = None
    journal: Optional[str] = None
    lexical_score: float
    semantic_score: float
    combined_score: float


class SourceStatsResponse(BaseModel):
    source: str
    count: int = 0
    status: str
    error: Optional[str] = None
    elapsed_ms: int = 0


class HybridSearchResponse(BaseModel):
    results: List[RankedPaperResponse]
    total: int
    cached: bool
    sources: List[SourceStatsResponse] = Field(default_factory=list)
    all_sources_failed: bool = False
    semantic_mode: str


@router.get("/search/hybrid", response_model=HybridSearchResponse)
@limiter.limit(settings.RATE_LIMIT_SEARCH)
async def hybrid_search(
    request: Request,
    q: str = Query("", description="Search query"),
    limit: int = Query(20, description="Maximum number of results"),
    cache: bool = Query(True, description="Serve from the result cache when possible"),
    ranker: HybridRanker = Depends(get_hybrid_ranker),
):
    """Rank papers from the local library and external sources for ``q``."""
    try:
        result_set = await ranker.rank_detached(q, limit, use_cache=cache)
    except InvalidArgument as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    return result_set_to_dict(result_set)


@router.delete("/search/cache")
async def clear_search_cache(ranker: HybridRanker = Depends(get_hybrid_ranker)) -> Dict[str, Any]:
    await ranker.clear_cache()
    return {"ok": True}


@router.get("/search/metrics")
async def search_metrics() -> Dict[str, Any]:
    if not settings.ENABLE_METRICS:
        return {"ok": True, "enabled": False, "data": {}}
    return {"ok": True, "enabled": True, "data": get_ranking_metrics_collector().snapshot()}
