"""Extract company candidates from search results with a language model."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence

from app.models.evidence import CandidateCompany, CandidateExtractionResult, SearchResult
from app.observability.metrics import metrics
from pipelines.providers import StructuredLLM
from pipelines.signals.batching import BatchProgress, notify_progress
from pipelines.signals.domains import DomainExclusions, normalize_domain

logger = logging.getLogger("pipelines.signals.candidate_extractor")

CHUNK_SIZE = 20
MIN_CONFIDENCE = 0.6
EXTRACTOR_TEMPERATURE = 0.3
EXTRACTOR_MAX_RETRIES = 2

SYSTEM_PROMPT = """You extract the companies that search results are about.

Rules:
1. Only extract a company when its domain is explicitly visible in the URL or the snippet. \
Never guess or invent a domain.
2. Use the company name exactly as written.
3. Extract the subject company, not the publisher of the page.
4. Skip news and media sites, job boards, social networks, aggregators and directories.
5. Confidence: 0.9-1.0 when the domain is plainly visible, 0.7-0.8 when it follows directly \
from context, 0.5-0.6 when it needs an assumption. Leave out anything lower.

Return a CandidateExtractionResult: candidates (companyName, domain, sourceUrl, snippet, \
confidence) and totalResultsProcessed."""


def _format_results(results: Sequence[SearchResult]) -> str:
    return "\n\n".join(
        f"[{index}] URL: {result.url}\n    Title: {result.title}\n    Snippet: {result.snippet}"
        for index, result in enumerate(results, start=1)
    )


def filter_candidates(
    candidates: Iterable[CandidateCompany],
    *,
    min_confidence: float = MIN_CONFIDENCE,
    exclusions: DomainExclusions | None = None,
) -> list[CandidateCompany]:
    """Normalize domains and drop low-confidence, excluded or malformed candidates."""
    exclusions = exclusions or DomainExclusions.default()
    kept: list[CandidateCompany] = []
    for candidate in candidates:
        if candidate.confidence < min_confidence:
            continue
        domain = normalize_domain(candidate.domain)
        if not exclusions.accepts(domain):
            continue
        kept.append(candidate.model_copy(update={"domain": domain}))
    return kept


def deduplicate_candidates(candidates: Iterable[CandidateCompany]) -> list[CandidateCompany]:
    """One candidate per domain; the higher confidence wins and first-seen order is kept."""
    by_domain: dict[str, CandidateCompany] = {}
    for candidate in candidates:
        domain = normalize_domain(candidate.domain)
        existing = by_domain.get(domain)
        if existing is None or candidate.confidence > existing.confidence:
            by_domain[domain] = candidate
    return list(by_domain.values())


async def _extract_chunk(
    results: Sequence[SearchResult],
    llm: StructuredLLM,
    *,
    min_confidence: float,
    exclusions: DomainExclusions,
) -> list[CandidateCompany]:
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {
            "role": "user",
            "content": (
                "Extract company candidates from these search results. Only include companies "
                "whose domain you can clearly identify.\n\n"
                f"SEARCH RESULTS:\n{_format_results(results)}\n\n"
                f"totalResultsProcessed: {len(results)}"
            ),
        },
    ]
    try:
        extraction = await llm.complete_structured(
            messages,
            schema=CandidateExtractionResult,
            schema_name="CandidateExtractionResult",
            max_retries=EXTRACTOR_MAX_RETRIES,
            temperature=EXTRACTOR_TEMPERATURE,
        )
    except Exception as exc:  # noqa: BLE001 - a failed chunk degrades to no candidates
        logger.warning(
            "candidate_extractor.chunk_failed",
            extra={"results": len(results), "reason": str(exc) or type(exc).__name__},
        )
        metrics.increment("candidate_extractor.chunk_failed")
        return []
    return filter_candidates(
        extraction.candidates, min_confidence=min_confidence, exclusions=exclusions
    )


async def extract_candidates(
    results: Sequence[SearchResult],
    llm: StructuredLLM,
    *,
    chunk_size: int = CHUNK_SIZE,
    min_confidence: float = MIN_CONFIDENCE,
    exclusions: DomainExclusions | None = None,
    on_progress: BatchProgress | None = None,
) -> list[CandidateCompany]:
    """Process results chunk by chunk and return globally deduplicated candidates."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    exclusions = exclusions or DomainExclusions.default()
    collected: list[CandidateCompany] = []
    total = len(results)
    for start in range(0, total, chunk_size):
        chunk = results[start : start + chunk_size]
        collected.extend(
            await _extract_chunk(chunk, llm, min_confidence=min_confidence, exclusions=exclusions)
        )
        if on_progress is not None:
            notify_progress(on_progress, min(start + chunk_size, total), total)
    candidates = deduplicate_candidates(collected)
    logger.info(
        "candidate_extractor.completed",
        extra={"results": total, "extracted": len(collected), "unique": len(candidates)},
    )
    return candidates
