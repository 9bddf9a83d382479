from fastapi import HTTPException, Request, status

from paperrank.services.paper_ranking_service import HybridRanker


def get_hybrid_ranker(request: Request) -> HybridRanker:
    """Return the ranker built during application startup."""
    service = getattr(request.app.state, "ranking_service", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ranking service not initialized",
        )
    return service.ranker
