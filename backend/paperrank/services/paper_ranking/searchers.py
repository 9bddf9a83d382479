"""Source adapters translating literature APIs and the local library into candidates."""

from __future__ import annotations

import asyncio
import logging
import re
import time
import xml.etree.ElementTree as ET
from abc import abstractmethod
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import aiohttp

from .config import RankingConfig
from .errors import RateLimitError, SourceUnavailable
from .interfaces import SourceAdapter
from .models import CandidatePaper, PaperSource, SourceOutcome, extract_arxiv_id
from .repository import PaperFilter, PaperRepository
from .retry import RetryableError, RetryPolicy, parse_retry_after, retry_async

logger = logging.getLogger(__name__)

USER_AGENT = "PaperRank/1.0"


def build_paper_urls(
    paper_id: Optional[str],
    url: Optional[str],
    pdf_url: Optional[str],
    doi: Optional[str] = None,
) -> Tuple[Optional[str], Optional[str]]:
    """Fill in landing-page and PDF links that a source left out."""
    url = (url or "").strip() or None
    pdf_url = (pdf_url or "").strip() or None

    if not url and paper_id:
        if re.fullmatch(r"\d{4}\.\d{4,5}(v\d+)?", paper_id):
            url = f"https://arxiv.org/abs/{paper_id}"
        elif re.match(r"^10\.\d+/", paper_id):
            url = f"https://doi.org/{paper_id}"
        else:
            url = f"https://www.semanticscholar.org/paper/{paper_id}"

    if not pdf_url:
        arxiv_id = extract_arxiv_id(url, doi)
        if arxiv_id:
            pdf_url = f"https://arxiv.org/pdf/{arxiv_id}.pdf"
        else:
            biorxiv_doi = None
            for candidate in (doi, url):
                if candidate and "10.1101/" in candidate:
                    biorxiv_doi = candidate.split("10.1101/", 1)[1]
                    break
            if biorxiv_doi:
                pdf_url = f"https://www.biorxiv.org/content/10.1101/{biorxiv_doi}.full.pdf"

    return url, pdf_url


class SearcherBase(SourceAdapter):
    """Shared HTTP, retry and failure handling for remote sources.

    Subclasses implement ``_search``; it may raise ``SourceUnavailable``
    (or anything else) and ``search_with_outcome`` turns that into an
    empty, labelled outcome.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        config: RankingConfig,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.session = session
        self.config = config
        self.retry_policy = retry_policy or RetryPolicy.from_config(config)
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or time.monotonic

    @abstractmethod
    async def _search(self, query: str, limit: int, deadline: float) -> List[CandidatePaper]:
        """Fetch and parse candidates; every request must finish by ``deadline``."""

    def _deadline(self) -> float:
        """One deadline per search, kept a little inside ``search_timeout``."""
        timeout = self.config.search_timeout
        return self._clock() + timeout - min(1.0, timeout * 0.1)

    async def search(self, query: str, limit: int) -> List[CandidatePaper]:
        outcome = await self.search_with_outcome(query, limit)
        return outcome.papers

    async def search_with_outcome(self, query: str, limit: int) -> SourceOutcome:
        name = self.get_source_name()
        if not query or not query.strip():
            logger.warning("%s received empty query", name)
            return SourceOutcome(papers=[], status="empty")
        try:
            papers = await self._search(query.strip(), limit, self._deadline())
        except SourceUnavailable as exc:
            logger.warning("%s unavailable (%s): %s", name, exc.status, exc)
            return SourceOutcome(papers=[], status=exc.status, error=str(exc))
        except asyncio.TimeoutError:
            logger.warning("%s timed out", name)
            return SourceOutcome(papers=[], status="timeout", error="Request timed out")
        except Exception as exc:
            logger.error("Error searching %s: %s", name, exc)
            return SourceOutcome(papers=[], status="error", error=str(exc)[:200])

        papers = papers[:limit]
        logger.info("%s returned %s candidates", name, len(papers))
        return SourceOutcome(papers=papers, status="success" if papers else "empty")

    async def _request(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        expect: str = "json",
        deadline: Optional[float] = None,
    ) -> Any:
        """GET ``url`` with retry on 429/5xx and transport errors.

        Attempts and backoff waits all end by ``deadline`` (a ``clock()``
        value); without one the request gets its own ``search_timeout``.
        """
        name = self.get_source_name()
        request_headers = {"User-Agent": USER_AGENT}
        request_headers.update(headers or {})
        if deadline is None:
            deadline = self._clock() + self.config.search_timeout

        async def attempt(_: int) -> Any:
            remaining = deadline - self._clock()
            if remaining <= 0:
                raise RetryableError("time budget exhausted", timeout=True)
            timeout = aiohttp.ClientTimeout(total=min(self.config.request_timeout, remaining))
            try:
                async with self.session.get(url, params=params, headers=request_headers, timeout=timeout) as resp:
                    if resp.status == 200:
                        if expect == "text":
                            return await resp.text()
                        return await resp.json(content_type=None)
                    if resp.status in self.retry_policy.retry_statuses:
                        raise RetryableError(
                            status=resp.status,
                            retry_after=parse_retry_after(resp.headers.get("Retry-After")),
                        )
                    body = await resp.text()
                    raise SourceUnavailable(name, f"HTTP {resp.status}: {body[:200]}", http_status=resp.status)
            except asyncio.TimeoutError as exc:
                raise RetryableError("request timed out", timeout=True) from exc
            except aiohttp.ClientError as exc:
                raise RetryableError(str(exc) or exc.__class__.__name__) from exc

        try:
            return await retry_async(
                attempt,
                self.retry_policy,
                sleep=self._sleep,
                clock=self._clock,
                deadline=deadline,
                label=name,
            )
        except RetryableError as exc:
            if exc.status == 429:
                raise RateLimitError(name) from exc
            status = "timeout" if exc.timeout else "error"
            raise SourceUnavailable(name, f"gave up: {exc}", status=status, http_status=exc.status) from exc

    def _parse_records(
        self,
        items: Iterable[Any],
        parse_one: Callable[[Any], CandidatePaper],
    ) -> List[CandidatePaper]:
        """Parse each record independently; malformed records are skipped."""
        papers: List[CandidatePaper] = []
        for item in items:
            try:
                papers.append(parse_one(item))
            except (ValueError, KeyError, TypeError, AttributeError) as exc:
                logger.debug("Skipping malformed %s record: %s", self.get_source_name(), exc)
        return papers


class ArxivSearcher(SearcherBase):
    """arXiv searcher (Atom feed)."""

    API_URL = "http://export.arxiv.org/api/query"
    NS = {"atom": "http://www.w3.org/2005/Atom", "arxiv": "http://arxiv.org/schemas/atom"}

    def get_source_name(self) -> str:
        return PaperSource.ARXIV.value

    @staticmethod
    def build_query(query: str) -> str:
        words = [w for w in re.split(r"\s+", query.strip()) if w]
        return " AND ".join(f"all:{w}" for w in words)

    async def _search(self, query: str, limit: int, deadline: float) -> List[CandidatePaper]:
        params = {
            "search_query": self.build_query(query),
            "start": 0,
            "max_results": limit,
            "sortBy": "relevance",
            "sortOrder": "descending",
        }
        content = await self._request(self.API_URL, params=params, expect="text", deadline=deadline)
        return self._parse_response(content)

    def _parse_response(self, xml_content: str) -> List[CandidatePaper]:
        try:
            root = ET.fromstring(xml_content)
        except ET.ParseError as exc:
            raise SourceUnavailable(self.get_source_name(), f"malformed Atom feed: {exc}") from exc
        return self._parse_records(root.findall("atom:entry", self.NS), self._parse_entry)

    def _parse_entry(self, entry: ET.Element) -> CandidatePaper:
        ns = self.NS
        entry_url = (entry.findtext("atom:id", default="", namespaces=ns) or "").strip()
        arxiv_id = extract_arxiv_id(entry_url)
        if not arxiv_id:
            raise ValueError(f"entry without arXiv id: {entry_url!r}")

        authors = [
            (author.findtext("atom:name", default="", namespaces=ns) or "").strip()
            for author in entry.findall("atom:author", ns)
        ]

        pdf_url = None
        abs_url = None
        for link in entry.findall("atom:link", ns):
            href = link.get("href", "")
            if link.get("title") == "pdf":
                pdf_url = href
            elif link.get("rel") == "alternate" and "/abs/" in href:
                abs_url = href

        journal = None
        primary = entry.find("arxiv:primary_category", ns)
        if primary is not None and primary.get("term"):
            journal = f"arXiv:{primary.get('term')}"
        tags = [c.get("term") for c in entry.findall("atom:category", ns) if c.get("term")]

        doi = entry.findtext("arxiv:doi", default=None, namespaces=ns)
        url, pdf_url = build_paper_urls(arxiv_id, abs_url or entry_url, pdf_url, doi)

        return CandidatePaper.create(
            id=arxiv_id,
            title=entry.findtext("atom:title", default="", namespaces=ns),
            source=self.get_source_name(),
            abstract=entry.findtext("atom:summary", default="", namespaces=ns),
            authors=authors,
            year=(entry.findtext("atom:published", default="", namespaces=ns) or "")[:4],
            url=url,
            pdf_url=pdf_url,
            tags=tags,
            doi=doi,
            journal=journal,
        )


class SemanticScholarSearcher(SearcherBase):
    """Semantic Scholar graph API searcher."""

    API_URL = "https://api.semanticscholar.org/graph/v1/paper/search"
    FIELDS = "paperId,title,abstract,authors,year,url,venue,citationCount,externalIds,openAccessPdf,fieldsOfStudy"

    def __init__(self, session: aiohttp.ClientSession, config: RankingConfig, api_key: Optional[str] = None, **kwargs):
        super().__init__(session, config, **kwargs)
        self.api_key = api_key

    def get_source_name(self) -> str:
        return PaperSource.SEMANTIC_SCHOLAR.value

    async def _search(self, query: str, limit: int, deadline: float) -> List[CandidatePaper]:
        headers = {}
        if self.api_key:
            headers["x-api-key"] = self.api_key
        params = {"query": query[:400], "limit": min(limit, 100), "fields": self.FIELDS}
        data = await self._request(self.API_URL, params=params, headers=headers, deadline=deadline)
        if not isinstance(data, dict):
            raise SourceUnavailable(self.get_source_name(), "unexpected payload shape")
        return self._parse_records(data.get("data") or [], self._parse_item)

    def _parse_item(self, item: Dict[str, Any]) -> CandidatePaper:
        external_ids = item.get("externalIds") or {}
        doi = external_ids.get("DOI")
        arxiv_id = external_ids.get("ArXiv") or external_ids.get("ARXIV")

        pdf_url = None
        oapdf = item.get("openAccessPdf") or {}
        if isinstance(oapdf, dict):
            pdf_url = oapdf.get("url")

        url = item.get("url")
        if not pdf_url and arxiv_id:
            pdf_url = f"https://arxiv.org/pdf/{arxiv_id}.pdf"
        url, pdf_url = build_paper_urls(item.get("paperId"), url, pdf_url, doi)

        return CandidatePaper.create(
            id=item["paperId"],
            title=item.get("title"),
            source=self.get_source_name(),
            abstract=item.get("abstract"),
            authors=item.get("authors") or [],
            year=item.get("year"),
            url=url,
            pdf_url=pdf_url,
            citation_count=item.get("citationCount"),
            tags=item.get("fieldsOfStudy") or [],
            doi=doi,
            journal=item.get("venue"),
        )


class PubMedSearcher(SearcherBase):
    """PubMed searcher leveraging NCBI E-utilities."""

    BASE_URL = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils/"

    def __init__(self, session: aiohttp.ClientSession, config: RankingConfig, email: Optional[str] = None, **kwargs):
        super().__init__(session, config, **kwargs)
        self.email = email

    def get_source_name(self) -> str:
        return PaperSource.PUBMED.value

    def _params(self, **extra: Any) -> Dict[str, Any]:
        params: Dict[str, Any] = {"db": "pubmed", "tool": "PaperRank"}
        if self.email:
            params["email"] = self.email
        params.update(extra)
        return params

    async def _search(self, query: str, limit: int, deadline: float) -> List[CandidatePaper]:
        search_data = await self._request(
            f"{self.BASE_URL}esearch.fcgi",
            params=self._params(term=query[:400], retmode="json", retmax=max(1, limit)),
            deadline=deadline,
        )
        ids = [pmid for pmid in ((search_data or {}).get("esearchresult") or {}).get("idlist") or [] if pmid]
        if not ids:
            return []

        summary_data = await self._request(
            f"{self.BASE_URL}esummary.fcgi",
            params=self._params(id=",".join(ids), retmode="json"),
            deadline=deadline,
        )
        result = (summary_data or {}).get("result") or {}

        abstracts = await self._fetch_abstracts(ids, deadline)

        def parse(pmid: str) -> CandidatePaper:
            return self._parse_summary(pmid, result[pmid], abstracts.get(pmid, ""))

        return self._parse_records([pmid for pmid in ids if isinstance(result.get(pmid), dict)], parse)

    async def _fetch_abstracts(self, ids: List[str], deadline: float) -> Dict[str, str]:
        """Abstracts are optional; a failure here keeps the summaries.

        Shares the search deadline, so running out of time drops only the
        abstracts and never the summaries already fetched.
        """
        try:
            xml_text = await self._request(
                f"{self.BASE_URL}efetch.fcgi",
                params=self._params(id=",".join(ids), retmode="xml", rettype="abstract"),
                expect="text",
                deadline=deadline,
            )
            root = ET.fromstring(xml_text)
        except (SourceUnavailable, ET.ParseError) as exc:
            logger.warning("PubMed efetch failed, continuing without abstracts: %s", exc)
            return {}

        abstracts: Dict[str, str] = {}
        for article in root.findall(".//PubmedArticle"):
            pmid = (article.findtext(".//MedlineCitation/PMID") or "").strip()
            if not pmid:
                continue
            chunks = []
            for abstract_el in article.findall(".//Abstract/AbstractText"):
                text = "".join(abstract_el.itertext()).strip()
                if not text:
                    continue
                label = abstract_el.get("Label")
                chunks.append(f"{label}: {text}" if label else text)
            if chunks:
                abstracts[pmid] = " ".join(chunks)
        return abstracts

    def _parse_summary(self, pmid: str, item: Dict[str, Any], abstract: str) -> CandidatePaper:
        authors = [a.get("name") for a in item.get("authors") or [] if isinstance(a, dict)]

        doi = None
        pmc_id = None
        for entry in item.get("articleids") or []:
            if not isinstance(entry, dict):
                continue
            idtype = (entry.get("idtype") or "").lower()
            value = (entry.get("value") or "").strip()
            if idtype == "doi" and value:
                doi = value
            elif idtype == "pmc" and value:
                pmc_id = value.upper()

        pdf_url = f"https://www.ncbi.nlm.nih.gov/pmc/articles/{pmc_id}/pdf" if pmc_id else None

        return CandidatePaper.create(
            id=item.get("uid") or pmid,
            title=item.get("title"),
            source=self.get_source_name(),
            abstract=abstract,
            authors=authors,
            year=item.get("sortpubdate") or item.get("pubdate"),
            url=f"https://pubmed.ncbi.nlm.nih.gov/{pmid}/",
            pdf_url=pdf_url,
            doi=doi,
            journal=item.get("fulljournalname"),
        )


class LocalLibrarySearcher(SourceAdapter):
    """Searches the owner's saved papers through the paper repository."""

    def __init__(self, repository: PaperRepository, owner_id: str):
        self.repository = repository
        self.owner_id = owner_id

    def get_source_name(self) -> str:
        return PaperSource.LOCAL.value

    async def search(self, query: str, limit: int) -> List[CandidatePaper]:
        outcome = await self.search_with_outcome(query, limit)
        return outcome.papers

    async def search_with_outcome(self, query: str, limit: int) -> SourceOutcome:
        paper_filter = PaperFilter(text=query, limit=limit)
        loop = asyncio.get_running_loop()
        try:
            papers = await loop.run_in_executor(
                None,
                lambda: self.repository.fetch_papers_for_owner(self.owner_id, paper_filter),
            )
        except Exception as exc:
            logger.error("Local library search failed for owner %s: %s", self.owner_id, exc)
            return SourceOutcome(papers=[], status="error", error=str(exc)[:200])
        return SourceOutcome(papers=list(papers), status="success" if papers else "empty")
