"""Execute planned queries against a search provider and deduplicate the results."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from urllib.parse import urlparse

from app.models.evidence import RetrievalResult, RetrievalStats, SearchQuery, SearchResult
from app.observability.metrics import metrics
from pipelines.providers import SearchProvider
from pipelines.signals.batching import BatchProgress, run_in_batches

logger = logging.getLogger("pipelines.signals.retrieval")

RESULTS_PER_QUERY = 10
CONCURRENT_REQUESTS = 3
RATE_LIMIT_DELAY_SECONDS = 0.2


async def execute_search_queries(
    queries: Sequence[SearchQuery],
    search: SearchProvider,
    *,
    max_results_per_query: int = RESULTS_PER_QUERY,
    exclude_domains: Sequence[str] = (),
    concurrency: int = CONCURRENT_REQUESTS,
    delay_seconds: float = RATE_LIMIT_DELAY_SECONDS,
    on_progress: BatchProgress | None = None,
) -> tuple[list[RetrievalResult], RetrievalStats]:
    """Run every query, isolating per-query failures."""

    async def _search(query: SearchQuery) -> RetrievalResult:
        try:
            response = await search.search(
                query.query,
                max_results=max_results_per_query,
                exclude_domains=list(exclude_domains),
            )
        except Exception as exc:  # noqa: BLE001 - one failed query never aborts the batch
            reason = str(exc) or type(exc).__name__
            logger.warning(
                "retrieval.query_failed",
                extra={"query": query.query, "code": getattr(exc, "code", None), "reason": reason},
            )
            metrics.increment("retrieval.query_failed")
            return RetrievalResult(query=query, error=reason)
        return RetrievalResult(query=query, results=list(response.results))

    results = await run_in_batches(
        list(queries),
        _search,
        batch_size=concurrency,
        delay_seconds=delay_seconds,
        on_progress=on_progress,
    )
    stats = RetrievalStats(total_queries=len(queries))
    for result in results:
        if result.error is None:
            stats.successful_queries += 1
            stats.total_results += len(result.results)
        else:
            stats.failed_queries += 1
    logger.info("retrieval.completed", extra=stats.model_dump())
    return results, stats


def normalize_url(url: str) -> str:
    """Dedup key: host + path without trailing slash; query and fragment dropped."""
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return url.lower()
    if not parsed.hostname:
        return url.lower()
    return f"{parsed.hostname}{parsed.path.removesuffix('/')}"


def flatten_results(retrieval: Iterable[RetrievalResult]) -> list[SearchResult]:
    return [result for entry in retrieval for result in entry.results]


def deduplicate_results(results: Iterable[SearchResult]) -> list[SearchResult]:
    """Keep the first result per normalized URL, preserving order."""
    seen: set[str] = set()
    unique: list[SearchResult] = []
    for result in results:
        key = normalize_url(result.url)
        if key in seen:
            continue
        seen.add(key)
        unique.append(result)
    return unique
