"""Abstract base classes defining the ranking contracts."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

from .models import CandidatePaper, SourceOutcome


class SourceAdapter(ABC):
    """Interface implemented by source-specific adapters.

    ``search`` must not raise for operational failures (timeouts, non-2xx
    responses, malformed payloads); it returns an empty list instead.
    ``search_with_outcome`` additionally reports how the search went so the
    ranker can tell "no matches" apart from "source failed".
    """

    @abstractmethod
    def get_source_name(self) -> str:  # pragma: no cover - interface only
        """Return the canonical name for this source."""

    @abstractmethod
    async def search(self, query: str, limit: int) -> List[CandidatePaper]:
        """Execute the search and return normalized candidates."""

    async def search_with_outcome(self, query: str, limit: int) -> SourceOutcome:
        papers = await self.search(query, limit)
        return SourceOutcome(papers=list(papers), status="success" if papers else "empty")
