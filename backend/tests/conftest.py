"""
Pytest configuration and shared fixtures for the ranking engine tests.
"""

import os
import sys
from typing import Callable, List, Optional

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from paperrank.services.paper_ranking.config import RankingConfig
from paperrank.services.paper_ranking.models import CandidatePaper


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ranking_config() -> RankingConfig:
    return RankingConfig(search_timeout=2.0, embedding_timeout=2.0)


@pytest.fixture
def make_paper() -> Callable[..., CandidatePaper]:
    def _make(
        paper_id: str,
        title: str,
        *,
        source: str = "arxiv",
        abstract: str = "",
        authors: Optional[List[str]] = None,
        year: int = 0,
        citation_count: int = 0,
        doi: Optional[str] = None,
        url: Optional[str] = None,
    ) -> CandidatePaper:
        return CandidatePaper.create(
            id=paper_id,
            title=title,
            source=source,
            abstract=abstract,
            authors=authors if authors is not None else ["A. Author"],
            year=year,
            citation_count=citation_count,
            doi=doi,
            url=url,
        )

    return _make
