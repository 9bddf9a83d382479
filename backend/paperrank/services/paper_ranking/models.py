"""Domain models used by the ranking engine."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class PaperSource(Enum):
    """Enumeration of supported paper sources."""

    LOCAL = "local"
    ARXIV = "arxiv"
    SEMANTIC_SCHOLAR = "semantic_scholar"
    PUBMED = "pubmed"


_ARXIV_NEW_ID = re.compile(r"(\d{4}\.\d{4,5})(?:v\d+)?", re.IGNORECASE)
_ARXIV_OLD_ID = re.compile(r"([a-z\-]+(?:\.[a-z]{2})?/\d{7})(?:v\d+)?", re.IGNORECASE)
_YEAR_PATTERN = re.compile(r"(1[89]\d{2}|2\d{3})")


def normalize_query(query: str) -> str:
    """Lowercase, trim and collapse internal whitespace."""
    return re.sub(r"\s+", " ", (query or "").strip().lower())


def _strip_accents(text: str) -> str:
    text = unicodedata.normalize('NFKD', text)
    return ''.join(c for c in text if not unicodedata.combining(c))


def normalize_doi(doi: Optional[str]) -> Optional[str]:
    """Normalize DOI to a consistent lowercase format without URL prefix."""
    if not doi:
        return None
    doi = doi.strip().lower()
    for prefix in ['https://doi.org/', 'http://doi.org/', 'doi:', 'doi.org/']:
        if doi.startswith(prefix):
            doi = doi[len(prefix):]
    doi = doi.strip()
    return doi if doi else None


def normalize_title(title: str) -> str:
    """Normalize title for fuzzy matching - removes punctuation, normalizes whitespace."""
    if not title:
        return ""
    title = _strip_accents(title.lower().strip())
    title = re.sub(r'[^\w\s]', '', title)
    return re.sub(r'\s+', ' ', title).strip()


def normalize_author(name: str) -> str:
    """Reduce an author name to a comparable family name.

    "Vaswani, Ashish", "Ashish Vaswani" and "A. Vaswani" all become "vaswani".
    """
    if not name:
        return ""
    name = _strip_accents(name.strip().lower())
    if "," in name:
        family = name.split(",", 1)[0]
    else:
        parts = name.split()
        family = parts[-1] if parts else ""
    return re.sub(r"[^\w]", "", family)


def extract_arxiv_id(*candidates: Optional[str]) -> Optional[str]:
    """Pull a version-less arXiv identifier out of ids, URLs or DOIs."""
    for raw in candidates:
        if not raw:
            continue
        text = raw.strip()
        lowered = text.lower()
        if lowered.startswith("10.48550/arxiv."):
            text = text[len("10.48550/arxiv."):]
        elif "arxiv.org/" in lowered:
            text = re.split(r"arxiv\.org/(?:abs|pdf)/", text, flags=re.IGNORECASE)[-1]
        elif lowered.startswith("arxiv:"):
            text = text.split(":", 1)[1]
        text = text.strip().rstrip("/")
        if text.lower().endswith(".pdf"):
            text = text[:-4]
        match = _ARXIV_NEW_ID.fullmatch(text) or _ARXIV_OLD_ID.fullmatch(text)
        if match:
            return match.group(1).lower()
    return None


def _coerce_authors(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        if ";" in raw:
            parts = raw.split(";")
        else:
            parts = re.split(r",|\band\b", raw)
        return [p.strip() for p in parts if p and p.strip()]
    authors: List[str] = []
    for item in raw:
        if isinstance(item, dict):
            item = item.get("name")
        if isinstance(item, str) and item.strip():
            authors.append(item.strip())
    return authors


def _coerce_year(raw: Any) -> int:
    if raw is None or isinstance(raw, bool):
        return 0
    if isinstance(raw, int):
        return raw if raw > 0 else 0
    match = _YEAR_PATTERN.search(str(raw))
    return int(match.group(1)) if match else 0


def _coerce_count(raw: Any) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return 0
    return max(0, value)


def _coerce_tags(raw: Optional[Iterable[Any]]) -> List[str]:
    if not raw:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    tags: List[str] = []
    for tag in raw:
        label = str(tag).strip() if tag is not None else ""
        if label and label not in tags:
            tags.append(label)
    return tags


def _clean_text(value: Optional[str]) -> str:
    return re.sub(r"\s+", " ", value or "").strip()


@dataclass
class CandidatePaper:
    """Normalized paper record produced by a source adapter before scoring."""

    id: str
    title: str
    source: str
    abstract: str = ""
    authors: List[str] = field(default_factory=list)
    year: int = 0
    url: Optional[str] = None
    pdf_url: Optional[str] = None
    citation_count: int = 0
    tags: List[str] = field(default_factory=list)
    doi: Optional[str] = None
    journal: Optional[str] = None

    @classmethod
    def create(
        cls,
        *,
        id: Any,
        title: Optional[str],
        source: str,
        abstract: Optional[str] = None,
        authors: Any = None,
        year: Any = None,
        url: Optional[str] = None,
        pdf_url: Optional[str] = None,
        citation_count: Any = None,
        tags: Optional[Iterable[Any]] = None,
        doi: Optional[str] = None,
        journal: Optional[str] = None,
    ) -> "CandidatePaper":
        """Build a candidate from loosely-typed source data.

        Raises ``ValueError`` when the record has no usable id or title so
        adapters can skip it.
        """
        paper_id = str(id).strip() if id is not None else ""
        clean_title = _clean_text(title)
        if not paper_id:
            raise ValueError("paper record has no id")
        if not clean_title:
            raise ValueError(f"paper record {paper_id!r} has no title")

        return cls(
            id=paper_id,
            title=clean_title,
            source=source,
            abstract=_clean_text(abstract),
            authors=_coerce_authors(authors),
            year=_coerce_year(year),
            url=(url or "").strip() or None,
            pdf_url=(pdf_url or "").strip() or None,
            citation_count=_coerce_count(citation_count),
            tags=_coerce_tags(tags),
            doi=(doi or "").strip() or None,
            journal=(journal or "").strip() or None,
        )

    @property
    def first_author(self) -> Optional[str]:
        return self.authors[0] if self.authors else None

    def dedup_keys(self) -> List[str]:
        """Return the keys used to recognise this paper across sources.

        Ids are only unique within a source, so the id key is scoped by
        source. DOI and arXiv ids are shared identifier schemes; the title
        key pairs the normalized title with the first author's family name.
        """
        keys = [f"id:{self.source}:{self.id.lower()}"]

        doi = normalize_doi(self.doi)
        if doi:
            keys.append(f"doi:{doi}")

        arxiv_id = extract_arxiv_id(self.id, self.url, self.pdf_url, self.doi)
        if arxiv_id:
            keys.append(f"arxiv:{arxiv_id}")

        title = normalize_title(self.title)
        if title:
            author = normalize_author(self.first_author or "")
            keys.append(f"title:{title}|{author}")

        return keys


@dataclass
class ScoredResult:
    """A candidate annotated with its relevance scores."""

    paper: CandidatePaper
    lexical_score: float
    semantic_score: float
    combined_score: float

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self.paper)
        data.update(
            lexical_score=round(self.lexical_score, 6),
            semantic_score=round(self.semantic_score, 6),
            combined_score=round(self.combined_score, 6),
        )
        return data


@dataclass
class SourceOutcome:
    """What one adapter produced for one query."""

    papers: List[CandidatePaper] = field(default_factory=list)
    status: str = "success"  # success, empty, timeout, rate_limited, error
    error: Optional[str] = None


@dataclass
class SourceStats:
    """Per-source statistics from a ranking run."""

    source: str
    count: int = 0
    status: str = "pending"
    error: Optional[str] = None
    elapsed_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status in ("success", "empty")


@dataclass
class RankedResultSet:
    """Result of ``HybridRanker.rank``."""

    results: List[ScoredResult] = field(default_factory=list)
    total_considered: int = 0
    served_from_cache: bool = False
    source_stats: List[SourceStats] = field(default_factory=list)
    semantic_mode: str = "lexical"  # hybrid, degraded, lexical, cached

    @property
    def sources_succeeded(self) -> int:
        return sum(1 for s in self.source_stats if s.succeeded)

    @property
    def sources_failed(self) -> int:
        return sum(1 for s in self.source_stats if not s.succeeded)

    @property
    def all_sources_failed(self) -> bool:
        """True when adapters ran and none of them answered successfully."""
        return bool(self.source_stats) and self.sources_succeeded == 0
