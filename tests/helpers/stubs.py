from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import Any

from app.clients.errors import LLMProviderError, SearchProviderError
from app.models.evidence import (
    CandidateCompany,
    EvidenceChunk,
    FetchedEvidence,
    SearchResponse,
    SearchResult,
)
from app.models.reports import SignalMatch, SignalMatchReport
from app.models.signals import (
    ICP,
    EvidenceSourceType,
    SignalCategory,
    SignalDefinition,
    SignalPriority,
    UserConfig,
)

Responder = Callable[[Sequence[dict[str, str]]], Any]


class StubLLM:
    """Structured LLM double keyed by schema name.

    A registered response may be a payload dict, a model instance, an exception (raised),
    or a callable receiving the messages. Lists are consumed one entry per call.
    """

    def __init__(self, responses: dict[str, Any] | None = None) -> None:
        self._responses: dict[str, Any] = dict(responses or {})
        self.calls: list[dict[str, Any]] = []

    def set(self, schema_name: str, response: Any) -> None:
        self._responses[schema_name] = response

    def calls_for(self, schema_name: str) -> list[dict[str, Any]]:
        return [call for call in self.calls if call["schema_name"] == schema_name]

    async def complete_structured(
        self,
        messages,
        *,
        schema,
        schema_name: str,
        max_retries: int = 3,
        temperature: float | None = None,
    ):
        self.calls.append(
            {
                "schema_name": schema_name,
                "messages": list(messages),
                "max_retries": max_retries,
                "temperature": temperature,
            }
        )
        if schema_name not in self._responses:
            raise LLMProviderError(f"no stub response for {schema_name}")
        response = self._responses[schema_name]
        if isinstance(response, list):
            if not response:
                raise LLMProviderError(f"stub responses exhausted for {schema_name}")
            response = response.pop(0)
        if callable(response) and not isinstance(response, type):
            response = response(messages)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, schema):
            return response
        return schema.model_validate(response)


class StubSearch:
    """Search double returning canned results per query (``"*"`` matches any query)."""

    def __init__(
        self,
        results: dict[str, list[SearchResult]] | None = None,
        failures: dict[str, Exception] | None = None,
    ) -> None:
        self._results = results or {}
        self._failures = failures or {}
        self.calls: list[dict[str, Any]] = []

    async def search(self, query: str, *, max_results: int, exclude_domains=()) -> SearchResponse:
        self.calls.append(
            {"query": query, "max_results": max_results, "exclude_domains": list(exclude_domains)}
        )
        if query in self._failures:
            raise self._failures[query]
        results = self._results.get(query, self._results.get("*", []))
        return SearchResponse(query=query, results=results[:max_results])


def failing_search(message: str = "provider down") -> SearchProviderError:
    return SearchProviderError(message, code="503_UPSTREAM")


def signal(
    signal_id: str,
    *,
    priority: SignalPriority = SignalPriority.MEDIUM,
    weight: float = 5,
    disqualifier: bool = False,
    enabled: bool = True,
) -> SignalDefinition:
    return SignalDefinition(
        id=signal_id,
        name=signal_id.replace("_", " ").title(),
        question=f"Does {{account}} show {signal_id}?",
        category=SignalCategory.DISQUALIFIER if disqualifier else SignalCategory.FUNDING_CORPORATE,
        priority=priority,
        weight=weight,
        query_templates=[signal_id],
        is_disqualifier=disqualifier,
        enabled=enabled,
    )


def default_signals() -> list[SignalDefinition]:
    return [
        signal("funding", priority=SignalPriority.HIGH, weight=9),
        signal("hiring", priority=SignalPriority.MEDIUM, weight=7),
        signal("launch", priority=SignalPriority.MEDIUM, weight=6),
        signal("low_buzz", priority=SignalPriority.LOW, weight=2),
        signal("bankrupt", priority=SignalPriority.HIGH, weight=10, disqualifier=True),
    ]


def user_config(signals: list[SignalDefinition] | None = None, **overrides: Any) -> UserConfig:
    payload: dict[str, Any] = {
        "offer": "Pipeline intelligence for B2B revenue teams",
        "icp": ICP(
            industries=["Software"],
            geos=["United States"],
            target_roles=["VP of Sales", "Chief Revenue Officer"],
        ),
        "signals": signals if signals is not None else default_signals(),
    }
    payload.update(overrides)
    return UserConfig(**payload)


def candidate(domain: str, *, name: str | None = None, confidence: float = 0.9) -> CandidateCompany:
    return CandidateCompany(
        company_name=name or domain.split(".")[0].title(),
        domain=domain,
        source_url=f"https://{domain}/news/announcement",
        snippet=f"{domain} made an announcement worth following up on.",
        confidence=confidence,
    )


def chunk(
    url: str,
    snippet: str = "A sufficiently long evidence snippet for tests.",
    *,
    source_type: EvidenceSourceType = EvidenceSourceType.NEWS,
) -> EvidenceChunk:
    return EvidenceChunk.create(url=url, title="Evidence", snippet=snippet, source_type=source_type)


def evidence(domain: str, *chunks: EvidenceChunk) -> FetchedEvidence:
    return FetchedEvidence(domain=domain, chunks=list(chunks))


def yes(signal_id: str, *urls: str, confidence: float = 0.9) -> SignalMatch:
    return SignalMatch(
        signal_id=signal_id,
        signal_name=signal_id.title(),
        result="yes",
        confidence=confidence,
        evidence_urls=list(urls),
        evidence_snippets=["supporting text"] if urls else [],
        reasoning=f"{signal_id} supported",
    )


def unknown(signal_id: str) -> SignalMatch:
    return SignalMatch(
        signal_id=signal_id,
        signal_name=signal_id.title(),
        result="unknown",
        confidence=0.0,
        reasoning="not enough evidence",
    )


def report(domain: str, *matches: SignalMatch, overall: float | None = None) -> SignalMatchReport:
    positives = [match for match in matches if match.is_positive]
    if overall is None:
        overall = sum(m.confidence for m in positives) / len(positives) if positives else 0.0
    return SignalMatchReport(
        domain=domain,
        company_name=domain.split(".")[0].title(),
        matches=list(matches),
        overall_confidence=overall,
    )
