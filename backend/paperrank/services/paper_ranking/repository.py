"""Read-only access to the user's saved paper library."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, List, Optional

from sqlalchemy import and_, func, or_
from sqlalchemy.orm import Session

from paperrank.models.research_paper import ResearchPaper

from .models import CandidatePaper, PaperSource, normalize_query

logger = logging.getLogger(__name__)


@dataclass
class PaperFilter:
    """Restricts which saved papers are returned."""

    text: Optional[str] = None
    limit: int = 100
    year_from: Optional[int] = None
    year_to: Optional[int] = None


class PaperRepository(ABC):
    """Interface over the persistent paper store."""

    @abstractmethod
    def fetch_papers_for_owner(self, owner_id: str, paper_filter: PaperFilter) -> List[CandidatePaper]:
        """Return the owner's papers matching ``paper_filter``, newest first."""


class SqlAlchemyPaperRepository(PaperRepository):
    """Paper repository backed by the ``research_papers`` table."""

    def __init__(self, session_factory: Callable[[], Session], min_token_length: int = 3):
        self.session_factory = session_factory
        self.min_token_length = min_token_length

    def _text_clause(self, text: str):
        tokens = [t for t in normalize_query(text).split(" ") if len(t) >= self.min_token_length]
        if not tokens:
            tokens = [normalize_query(text)]
        clauses = []
        for token in tokens:
            pattern = f"%{token}%"
            clauses.append(
                or_(
                    func.lower(ResearchPaper.title).like(pattern),
                    func.lower(func.coalesce(ResearchPaper.abstract, "")).like(pattern),
                )
            )
        return and_(*clauses)

    def fetch_papers_for_owner(self, owner_id: str, paper_filter: PaperFilter) -> List[CandidatePaper]:
        db = self.session_factory()
        try:
            query = db.query(ResearchPaper).filter(ResearchPaper.owner_id == owner_id)
            if paper_filter.text and paper_filter.text.strip():
                query = query.filter(self._text_clause(paper_filter.text))
            if paper_filter.year_from is not None:
                query = query.filter(ResearchPaper.year >= paper_filter.year_from)
            if paper_filter.year_to is not None:
                query = query.filter(ResearchPaper.year <= paper_filter.year_to)

            rows = (
                query.order_by(ResearchPaper.created_at.desc())
                .limit(max(1, paper_filter.limit))
                .all()
            )
        finally:
            db.close()

        papers: List[CandidatePaper] = []
        for row in rows:
            try:
                papers.append(self._to_candidate(row))
            except ValueError as exc:
                logger.debug("Skipping malformed library paper %s: %s", row.id, exc)
        return papers

    @staticmethod
    def _to_candidate(row: ResearchPaper) -> CandidatePaper:
        return CandidatePaper.create(
            id=row.id,
            title=row.title,
            source=PaperSource.LOCAL.value,
            abstract=row.abstract,
            authors=row.authors,
            year=row.year,
            url=row.url,
            pdf_url=row.pdf_url,
            citation_count=row.citations,
            tags=row.tags,
            doi=row.doi,
            journal=row.journal,
        )
