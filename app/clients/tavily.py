"""Async client for the Tavily search API."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import httpx

from app.clients.errors import (
    SearchProviderError,
    SearchRateLimitError,
    SearchSchemaError,
    SearchTimeoutError,
)
from app.models.evidence import SearchResponse, SearchResult

PROVIDER = "tavily"


class TavilySearchClient:
    """Minimal Tavily API client wrapper."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.tavily.com",
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("TAVILY_API_KEY is required to create a TavilySearchClient.")
        self._api_key = api_key
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), timeout=timeout
        )

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()

    async def search(
        self,
        query: str,
        *,
        max_results: int = 10,
        exclude_domains: Sequence[str] = (),
    ) -> SearchResponse:
        """Execute a Tavily web search request."""
        if max_results <= 0:
            raise ValueError("max_results must be a positive integer.")

        payload: dict[str, Any] = {
            "query": query,
            "search_depth": "advanced",
            "max_results": max_results,
        }
        if exclude_domains:
            payload["exclude_domains"] = list(exclude_domains)
        headers = {"Authorization": f"Bearer {self._api_key}"}

        try:
            response = await self._http.post("/search", json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise SearchTimeoutError(PROVIDER) from exc
        except httpx.HTTPError as exc:
            raise SearchProviderError(f"HTTP error calling Tavily: {exc}", code="TAVILY_ERROR") from exc

        if response.status_code == 429:
            raise SearchRateLimitError(PROVIDER)
        if response.status_code in (408, 504):
            raise SearchTimeoutError(PROVIDER)
        if response.status_code >= 400:
            raise SearchProviderError(
                f"Tavily request failed: {response.status_code} - {_error_detail(response)}",
                code=f"TAVILY_{response.status_code}",
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise SearchSchemaError(PROVIDER, "Failed to decode Tavily response JSON.") from exc

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise SearchSchemaError(PROVIDER, "`results` missing from Tavily response.")
        if not all(isinstance(item, dict) for item in results):
            raise SearchSchemaError(PROVIDER, "Entries in `results` must be JSON objects.")
        return SearchResponse(
            query=query,
            results=[
                SearchResult(
                    url=str(item.get("url") or ""),
                    title=str(item.get("title") or ""),
                    snippet=str(item.get("content") or ""),
                    published_date=item.get("published_date"),
                    source=PROVIDER,
                )
                for item in results
                if item.get("url")
            ],
        )


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        detail = body.get("message") or body.get("detail") or body.get("error")
        if detail:
            return str(detail)
    return response.text[:200]
