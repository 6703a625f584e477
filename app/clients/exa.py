"""Async client for the Exa search API."""

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
from app.clients.tavily import _error_detail
from app.models.evidence import SearchResponse, SearchResult

PROVIDER = "exa"
SNIPPET_MAX_CHARACTERS = 1000


class ExaSearchClient:
    """Minimal Exa API client."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.exa.ai",
        timeout: float = 15.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not api_key:
            raise ValueError("EXA_API_KEY is required to create an ExaSearchClient.")
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
        """Run a keyword/neural Exa search and return text snippets."""
        if max_results <= 0:
            raise ValueError("max_results must be a positive integer.")

        payload: dict[str, Any] = {
            "query": query,
            "numResults": max_results,
            "type": "auto",
            "contents": {"text": {"maxCharacters": SNIPPET_MAX_CHARACTERS}},
        }
        if exclude_domains:
            payload["excludeDomains"] = list(exclude_domains)
        headers = {"X-API-KEY": self._api_key}

        try:
            response = await self._http.post("/search", json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise SearchTimeoutError(PROVIDER) from exc
        except httpx.HTTPError as exc:
            raise SearchProviderError(f"HTTP error calling Exa: {exc}", code="EXA_ERROR") from exc

        if response.status_code == 429:
            raise SearchRateLimitError(PROVIDER)
        if response.status_code in (408, 504):
            raise SearchTimeoutError(PROVIDER)
        if response.status_code >= 400:
            raise SearchProviderError(
                f"Exa request failed: {response.status_code} - {_error_detail(response)}",
                code=response.headers.get("x-exa-error-code", "EXA_ERROR"),
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise SearchSchemaError(PROVIDER, "Failed to decode Exa response JSON.") from exc

        results = data.get("results") if isinstance(data, dict) else None
        if not isinstance(results, list):
            raise SearchSchemaError(PROVIDER, "`results` missing from Exa response.")
        if not all(isinstance(entry, dict) for entry in results):
            raise SearchSchemaError(PROVIDER, "Entries in `results` must be JSON objects.")
        return SearchResponse(
            query=query,
            results=[
                SearchResult(
                    url=str(entry.get("url") or ""),
                    title=str(entry.get("title") or ""),
                    snippet=str(entry.get("text") or entry.get("summary") or ""),
                    published_date=entry.get("publishedDate"),
                    source=PROVIDER,
                )
                for entry in results
                if entry.get("url")
            ],
        )
