import json

import httpx
import pytest

from app.clients.errors import (
    SearchProviderError,
    SearchRateLimitError,
    SearchSchemaError,
    SearchTimeoutError,
)
from app.clients.exa import ExaSearchClient
from app.clients.tavily import TavilySearchClient


def _http(handler, base_url: str) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=base_url)


def _tavily(handler) -> TavilySearchClient:
    return TavilySearchClient("tv-key", http_client=_http(handler, "https://api.tavily.com"))


def _exa(handler) -> ExaSearchClient:
    return ExaSearchClient("exa-key", http_client=_http(handler, "https://api.exa.ai"))


def test_clients_require_api_keys():
    with pytest.raises(ValueError):
        TavilySearchClient("")
    with pytest.raises(ValueError):
        ExaSearchClient("")


@pytest.mark.asyncio
async def test_tavily_search_sends_payload_and_normalizes_results():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "results": [
                    {
                        "url": "https://acme.io/press/series-b",
                        "title": "Acme raises Series B",
                        "content": "Acme raised $40M.",
                        "published_date": "2026-09-01",
                    },
                    {"title": "No url entry"},
                ]
            },
        )

    client = _tavily(handler)
    response = await client.search("acme series b", max_results=3, exclude_domains=["techcrunch.com"])

    assert captured["path"] == "/search"
    assert captured["auth"] == "Bearer tv-key"
    assert captured["body"] == {
        "query": "acme series b",
        "search_depth": "advanced",
        "max_results": 3,
        "exclude_domains": ["techcrunch.com"],
    }
    [result] = response.results
    assert result.url == "https://acme.io/press/series-b"
    assert result.snippet == "Acme raised $40M."
    assert result.published_date == "2026-09-01"
    assert result.source == "tavily"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status_code", "error_type", "code"),
    [
        (429, SearchRateLimitError, "TAVILY_429"),
        (504, SearchTimeoutError, "TAVILY_TIMEOUT"),
        (500, SearchProviderError, "TAVILY_500"),
    ],
)
async def test_tavily_status_codes_map_to_errors(status_code, error_type, code):
    client = _tavily(lambda request: httpx.Response(status_code, json={"detail": "nope"}))
    with pytest.raises(error_type) as excinfo:
        await client.search("q")
    assert excinfo.value.code == code


@pytest.mark.asyncio
async def test_tavily_transport_timeout():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(SearchTimeoutError):
        await _tavily(handler).search("q")


@pytest.mark.asyncio
async def test_tavily_schema_errors():
    with pytest.raises(SearchSchemaError) as excinfo:
        await _tavily(lambda request: httpx.Response(200, json={"answer": "x"})).search("q")
    assert excinfo.value.code == "TAVILY_SCHEMA_ERR"

    with pytest.raises(SearchSchemaError):
        await _tavily(lambda request: httpx.Response(200, text="<html>")).search("q")


@pytest.mark.asyncio
async def test_max_results_must_be_positive():
    with pytest.raises(ValueError):
        await _tavily(lambda request: httpx.Response(200, json={"results": []})).search("q", max_results=0)


@pytest.mark.asyncio
async def test_exa_search_uses_camel_case_payload_and_text_snippets():
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["key"] = request.headers["X-API-KEY"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "results": [
                    {
                        "url": "https://globex.com/news/launch",
                        "title": "Globex launches platform",
                        "summary": "Globex launched a new analytics platform.",
                        "publishedDate": "2026-08-12",
                    }
                ]
            },
        )

    response = await _exa(handler).search("globex launch", max_results=4, exclude_domains=["linkedin.com"])

    assert captured["key"] == "exa-key"
    assert captured["body"]["numResults"] == 4
    assert captured["body"]["excludeDomains"] == ["linkedin.com"]
    [result] = response.results
    assert result.snippet == "Globex launched a new analytics platform."
    assert result.published_date == "2026-08-12"
    assert result.source == "exa"


@pytest.mark.asyncio
async def test_exa_error_code_header_is_used():
    client = _exa(
        lambda request: httpx.Response(400, headers={"x-exa-error-code": "INVALID_REQUEST"}, json={"error": "bad"})
    )
    with pytest.raises(SearchProviderError) as excinfo:
        await client.search("q")
    assert excinfo.value.code == "INVALID_REQUEST"
    assert "bad" in str(excinfo.value)


@pytest.mark.asyncio
async def test_exa_rate_limit():
    with pytest.raises(SearchRateLimitError) as excinfo:
        await _exa(lambda request: httpx.Response(429)).search("q")
    assert excinfo.value.code == "EXA_429"
