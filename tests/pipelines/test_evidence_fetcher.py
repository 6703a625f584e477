from __future__ import annotations

import httpx
import pytest

from app.models.evidence import CandidateCompany, SearchResult, evidence_hash
from app.models.signals import EvidenceSourceType
from pipelines.signals.evidence_fetcher import (
    EvidenceFetcher,
    detect_source_type,
    extract_page_sentences,
    group_sources,
)

LONG_SENTENCE = "Acme Analytics expanded its revenue platform to twelve new enterprise customers this quarter"
PAGE = f"""
<html><head><style>body {{ color: red; }}</style><script>var tracking = "ignore me please, this is script text that is long";</script></head>
<body><p>Short one.</p><p>{LONG_SENTENCE}. {LONG_SENTENCE} again! Third sentence that is also long enough to be kept here?</p>
<p>A fourth sentence that should never be reached because only three are kept.</p></body></html>
"""


def _candidate(domain: str) -> CandidateCompany:
    return CandidateCompany(
        company_name=domain.split(".")[0].title(),
        domain=domain,
        source_url=f"https://{domain}/press/launch",
        snippet="Acme launched a new analytics product for revenue teams.",
        confidence=0.9,
    )


@pytest.mark.parametrize(
    ("url", "title", "expected"),
    [
        ("https://boards.greenhouse.io/acme/123", "", EvidenceSourceType.JOB_POST),
        ("https://acme.io/careers/ae", "", EvidenceSourceType.JOB_POST),
        ("https://www.prnewswire.com/acme", "", EvidenceSourceType.PRESS_RELEASE),
        ("https://acme.io/x", "Acme announces partnership", EvidenceSourceType.PRESS_RELEASE),
        ("https://www.sec.gov/cgi-bin/browse-edgar", "", EvidenceSourceType.SEC_FILING),
        ("https://acme.io/blog/post", "", EvidenceSourceType.BLOG),
        ("https://techcrunch.com/acme", "", EvidenceSourceType.NEWS),
        ("https://acme.io/about", "", EvidenceSourceType.COMPANY_SITE),
        ("https://acme.io/pricing", "Pricing", EvidenceSourceType.OTHER),
    ],
)
def test_detect_source_type_rules(url, title, expected):
    assert detect_source_type(url, title) is expected


def test_detect_source_type_first_rule_wins():
    assert detect_source_type("https://acme.io/news/jobs", None) is EvidenceSourceType.JOB_POST


def test_extract_page_sentences_strips_scripts_and_keeps_three():
    sentences = extract_page_sentences(PAGE)

    assert sentences[0] == f"{LONG_SENTENCE}."
    assert len(sentences) == 3
    assert all("tracking" not in sentence for sentence in sentences)
    assert all(sentence.endswith(".") for sentence in sentences)


def test_group_sources_assigns_subdomains_and_adds_candidate_source():
    results = [
        SearchResult(url="https://acme.io/blog/a", snippet="x"),
        SearchResult(url="https://jobs.acme.io/1", snippet="y"),
        SearchResult(url="https://notacme.io/2", snippet="z"),
    ]

    grouped = group_sources([_candidate("acme.io")], results)

    assert [r.url for r in grouped["acme.io"]] == [
        "https://acme.io/blog/a",
        "https://jobs.acme.io/1",
        "https://acme.io/press/launch",
    ]


@pytest.mark.parametrize("order", [("acme.com", "careers.acme.com"), ("careers.acme.com", "acme.com")])
def test_group_sources_prefers_most_specific_candidate_domain(order):
    results = [
        SearchResult(url="https://careers.acme.com/openings/ae", snippet="x"),
        SearchResult(url="https://www.acme.com/about", snippet="y"),
    ]

    grouped = group_sources([_candidate(domain) for domain in order], results)

    assert [r.url for r in grouped["careers.acme.com"]][0] == "https://careers.acme.com/openings/ae"
    assert "https://careers.acme.com/openings/ae" not in [r.url for r in grouped["acme.com"]]
    assert [r.url for r in grouped["acme.com"]][0] == "https://www.acme.com/about"


@pytest.mark.asyncio
async def test_page_fetch_without_http_client_yields_nothing():
    fetcher = EvidenceFetcher(None, delay_seconds=0)
    assert await fetcher._fetch_page("https://acme.io/about") is None


@pytest.mark.asyncio
async def test_snippet_only_mode_builds_hashed_chunks():
    fetcher = EvidenceFetcher(None, delay_seconds=0)
    results = [
        SearchResult(url="https://acme.io/careers/ae", title="AE", snippet="Acme is hiring ten account executives."),
        SearchResult(url="https://acme.io/tiny", title="tiny", snippet="too short"),
    ]

    [evidence] = await fetcher.fetch_for_candidates([_candidate("acme.io")], results)

    assert evidence.domain == "acme.io"
    assert [c.url for c in evidence.chunks] == ["https://acme.io/careers/ae", "https://acme.io/press/launch"]
    first = evidence.chunks[0]
    assert first.source_type is EvidenceSourceType.JOB_POST
    assert first.hash == evidence_hash(first.url, first.snippet)


@pytest.mark.asyncio
async def test_page_fetch_adds_sentences_and_dedups_by_hash():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=PAGE)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        fetcher = EvidenceFetcher(client, delay_seconds=0, retry_base_delay=0.001)
        source = SearchResult(url="https://acme.io/about", title="About", snippet=f"{LONG_SENTENCE}.")
        chunks = await fetcher.fetch_domain([source, source])

    snippets = [c.snippet for c in chunks]
    assert snippets.count(f"{LONG_SENTENCE}.") == 1
    assert len(chunks) == 3
    assert len({c.hash for c in chunks}) == len(chunks)


@pytest.mark.asyncio
async def test_page_fetch_retries_then_falls_back_to_snippet():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(503, text="unavailable")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        fetcher = EvidenceFetcher(client, retry_attempts=2, retry_base_delay=0.001, delay_seconds=0)
        chunks = await fetcher.fetch_domain(
            [SearchResult(url="https://acme.io/press/x", snippet="Acme announces a strategic partnership.")]
        )

    assert calls == 3
    assert [c.snippet for c in chunks] == ["Acme announces a strategic partnership."]


@pytest.mark.asyncio
async def test_transport_errors_are_contained():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        fetcher = EvidenceFetcher(client, retry_attempts=0, delay_seconds=0)
        chunks = await fetcher.fetch_domain([SearchResult(url="https://acme.io/x", snippet="")])

    assert chunks == []


@pytest.mark.asyncio
async def test_max_urls_per_domain_caps_sources():
    fetcher = EvidenceFetcher(None, max_urls_per_domain=2)
    sources = [
        SearchResult(url=f"https://acme.io/p{i}", snippet=f"Snippet number {i} with enough length.")
        for i in range(4)
    ]

    chunks = await fetcher.fetch_domain(sources)

    assert [c.url for c in chunks] == ["https://acme.io/p0", "https://acme.io/p1"]
