"""Gather, classify and hash evidence chunks for each candidate domain."""

from __future__ import annotations

import logging
import re
from collections.abc import Sequence

import httpx
from bs4 import BeautifulSoup

from app.models.evidence import CandidateCompany, EvidenceChunk, FetchedEvidence, SearchResult
from app.models.signals import EvidenceSourceType
from app.observability.metrics import metrics
from pipelines.signals.batching import BatchProgress, run_in_batches
from pipelines.signals.domains import domain_matches_suffix, host_of
from scripts.backoff import retry_async

logger = logging.getLogger("pipelines.signals.evidence_fetcher")

FETCH_TIMEOUT_SECONDS = 10.0
CONCURRENT_FETCHES = 5
BATCH_DELAY_SECONDS = 0.1
MAX_CONTENT_LENGTH = 50_000
MAX_URLS_PER_DOMAIN = 5
MIN_SNIPPET_LENGTH = 20
MIN_SENTENCE_LENGTH = 50
MAX_SENTENCE_LENGTH = 500
MAX_PAGE_SENTENCES = 3

HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; SignalLeads-Evidence/1.0)",
    "Accept": "text/html,application/xhtml+xml",
}

_SENTENCE_SPLIT = re.compile(r"[.!?]+")
_WHITESPACE = re.compile(r"\s+")

_SOURCE_RULES: tuple[tuple[EvidenceSourceType, tuple[str, ...], tuple[str, ...]], ...] = (
    (
        EvidenceSourceType.JOB_POST,
        ("/jobs", "/careers", "greenhouse.io", "lever.co", "workday.com"),
        ("job", "hiring", "career"),
    ),
    (
        EvidenceSourceType.PRESS_RELEASE,
        ("prnewswire", "businesswire", "globenewswire", "/press", "/news"),
        ("announces", "press release"),
    ),
    (
        EvidenceSourceType.SEC_FILING,
        ("sec.gov", "edgar"),
        ("sec filing", "10-k", "10-q"),
    ),
    (EvidenceSourceType.BLOG, ("/blog", "medium.com", "substack"), ()),
    (EvidenceSourceType.NEWS, ("techcrunch", "reuters", "bloomberg", "venturebeat", "forbes"), ()),
    (EvidenceSourceType.COMPANY_SITE, ("/about", "/team", "/company"), ()),
)


class PageFetchError(RuntimeError):
    """Raised for a non-2xx page response so the retry policy can kick in."""

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"HTTP {status_code} for {url}")
        self.code = f"{status_code}_HTTP_STATUS"


def detect_source_type(url: str, title: str | None) -> EvidenceSourceType:
    """Classify a URL by path/host patterns and title keywords; first rule wins."""
    url_lower = url.lower()
    title_lower = (title or "").lower()
    for source_type, url_patterns, title_patterns in _SOURCE_RULES:
        if any(pattern in url_lower for pattern in url_patterns):
            return source_type
        if any(pattern in title_lower for pattern in title_patterns):
            return source_type
    return EvidenceSourceType.OTHER


def extract_page_sentences(html: str) -> list[str]:
    """Visible text split into sentences; the first few of reasonable length are kept."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = _WHITESPACE.sub(" ", soup.get_text(" ")).strip()
    sentences: list[str] = []
    for raw in _SENTENCE_SPLIT.split(text):
        sentence = raw.strip()
        if MIN_SENTENCE_LENGTH <= len(sentence) <= MAX_SENTENCE_LENGTH:
            sentences.append(f"{sentence}.")
        if len(sentences) >= MAX_PAGE_SENTENCES:
            break
    return sentences


def group_sources(
    candidates: Sequence[CandidateCompany],
    search_results: Sequence[SearchResult],
) -> dict[str, list[SearchResult]]:
    """Search results per candidate domain plus each candidate's own source URL."""
    grouped: dict[str, list[SearchResult]] = {candidate.domain: [] for candidate in candidates}
    for result in search_results:
        host = host_of(result.url)
        if not host:
            continue
        owners = [domain for domain in grouped if domain_matches_suffix(host, domain)]
        if owners:
            grouped[max(owners, key=len)].append(result)
    for candidate in candidates:
        bucket = grouped[candidate.domain]
        if not any(result.url == candidate.source_url for result in bucket):
            bucket.append(
                SearchResult(
                    url=candidate.source_url,
                    title=candidate.company_name,
                    snippet=candidate.snippet,
                )
            )
    return grouped


class EvidenceFetcher:
    """Build per-domain evidence from search snippets and best-effort page fetches."""

    def __init__(
        self,
        http_client: httpx.AsyncClient | None,
        *,
        timeout_seconds: float = FETCH_TIMEOUT_SECONDS,
        max_content_length: int = MAX_CONTENT_LENGTH,
        retry_attempts: int = 2,
        retry_base_delay: float = 0.5,
        max_urls_per_domain: int = MAX_URLS_PER_DOMAIN,
        concurrency: int = CONCURRENT_FETCHES,
        delay_seconds: float = BATCH_DELAY_SECONDS,
        fetch_pages: bool = True,
    ) -> None:
        self._client = http_client
        self._timeout = timeout_seconds
        self._max_content_length = max_content_length
        self._retry_attempts = max(retry_attempts, 0)
        self._retry_base_delay = retry_base_delay
        self._max_urls = max_urls_per_domain
        self._concurrency = concurrency
        self._delay = delay_seconds
        self._fetch_pages = fetch_pages and http_client is not None

    async def fetch_for_candidates(
        self,
        candidates: Sequence[CandidateCompany],
        search_results: Sequence[SearchResult],
        on_progress: BatchProgress | None = None,
    ) -> list[FetchedEvidence]:
        grouped = group_sources(candidates, search_results)

        async def _fetch(entry: tuple[str, list[SearchResult]]) -> FetchedEvidence:
            domain, sources = entry
            return FetchedEvidence(domain=domain, chunks=await self.fetch_domain(sources))

        evidence = await run_in_batches(
            list(grouped.items()),
            _fetch,
            batch_size=self._concurrency,
            delay_seconds=self._delay,
            on_progress=on_progress,
        )
        logger.info(
            "evidence_fetcher.completed",
            extra={
                "domains": len(evidence),
                "chunks": sum(len(item.chunks) for item in evidence),
            },
        )
        return evidence

    async def fetch_domain(self, sources: Sequence[SearchResult]) -> list[EvidenceChunk]:
        """Hash-deduplicated chunks for up to ``max_urls_per_domain`` sources."""
        chunks: list[EvidenceChunk] = []
        seen: set[str] = set()
        for source in list(sources)[: self._max_urls]:
            for chunk in await self._chunks_for_source(source):
                if chunk.hash in seen:
                    continue
                seen.add(chunk.hash)
                chunks.append(chunk)
        return chunks

    async def _chunks_for_source(self, source: SearchResult) -> list[EvidenceChunk]:
        source_type = detect_source_type(source.url, source.title)
        chunks: list[EvidenceChunk] = []
        if source.snippet and len(source.snippet) > MIN_SNIPPET_LENGTH:
            chunks.append(
                EvidenceChunk.create(
                    url=source.url,
                    title=source.title or "",
                    snippet=source.snippet,
                    source_type=source_type,
                )
            )
        if not self._fetch_pages:
            return chunks
        html = await self._fetch_page(source.url)
        if html:
            for sentence in extract_page_sentences(html):
                chunks.append(
                    EvidenceChunk.create(
                        url=source.url,
                        title=source.title or "",
                        snippet=sentence,
                        source_type=source_type,
                    )
                )
        return chunks

    async def _fetch_page(self, url: str) -> str | None:
        if self._client is None:
            return None
        client = self._client

        async def _get() -> httpx.Response:
            response = await client.get(
                url, headers=HEADERS, timeout=self._timeout, follow_redirects=True
            )
            if not response.is_success:
                raise PageFetchError(url, response.status_code)
            return response

        try:
            response = await retry_async(
                _get,
                retry_on=(PageFetchError, httpx.TransportError),
                max_attempts=self._retry_attempts + 1,
                base_delay=self._retry_base_delay,
            )
        except (PageFetchError, httpx.HTTPError, httpx.InvalidURL) as exc:
            logger.debug(
                "evidence_fetcher.page_failed",
                extra={"url": url, "reason": str(exc) or type(exc).__name__},
            )
            metrics.increment("evidence_fetcher.page_failed")
            return None
        return response.text[: self._max_content_length]
