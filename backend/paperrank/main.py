import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from paperrank import __version__
from paperrank.api.v1 import search
from paperrank.core.config import Settings, get_settings
from paperrank.core.logging_config import configure_logging
from paperrank.core.rate_limiter import init_rate_limiter
from paperrank.services.paper_ranking_service import PaperRankingServiceFactory

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, *, build_service: bool = True) -> FastAPI:
    """Build the API app; ``build_service=False`` leaves ``app.state.ranking_service`` to the caller."""
    settings = settings or get_settings()
    configure_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if build_service:
            app.state.ranking_service = await PaperRankingServiceFactory.create(settings)
        try:
            yield
        finally:
            service = getattr(app.state, "ranking_service", None)
            if build_service and service is not None:
                await service.close()
                logger.info("Ranking service closed")

    app = FastAPI(
        title=f"{settings.PROJECT_NAME} API",
        description="Hybrid lexical/semantic relevance ranking for research papers",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    init_rate_limiter(app)

    @app.get("/health")
    async def health_check():
        return {"status": "healthy", "service": f"{settings.PROJECT_NAME} Backend"}

    app.include_router(search.router, prefix=settings.API_V1_STR, tags=["search"])
    return app


app = create_app()
