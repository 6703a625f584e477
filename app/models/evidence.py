"""Search, candidate and evidence models produced by the early pipeline stages."""
# ruff: noqa: UP017

from __future__ import annotations

import hashlib
from datetime import datetime, timezone

from pydantic import ConfigDict, Field

from app.models.base import ContractModel
from app.models.signals import EvidenceSourceType

PRIMARY_SOURCE_TYPES = frozenset(
    {
        EvidenceSourceType.COMPANY_SITE,
        EvidenceSourceType.JOB_POST,
        EvidenceSourceType.PRESS_RELEASE,
        EvidenceSourceType.SEC_FILING,
    }
)


class SearchQuery(ContractModel):
    query: str
    target_signals: list[str] = Field(default_factory=list)
    expected_source_types: list[EvidenceSourceType] = Field(default_factory=list)
    rationale: str = ""


class QueryPlan(ContractModel):
    """Structured planner output."""

    queries: list[SearchQuery] = Field(min_length=1, max_length=50)
    icp_summary: str = ""
    signals_summary: str = ""


class SearchResult(ContractModel):
    url: str
    title: str = ""
    snippet: str = ""
    published_date: str | None = None
    source: str | None = Field(default=None, description="Provider that returned the result.")


class SearchResponse(ContractModel):
    """Normalized provider response for one query."""

    query: str
    results: list[SearchResult] = Field(default_factory=list)


class RetrievalResult(ContractModel):
    query: SearchQuery
    results: list[SearchResult] = Field(default_factory=list)
    error: str | None = None


class RetrievalStats(ContractModel):
    total_queries: int = 0
    successful_queries: int = 0
    failed_queries: int = 0
    total_results: int = 0


class CandidateCompany(ContractModel):
    company_name: str
    domain: str
    source_url: str
    snippet: str = ""
    confidence: float = Field(ge=0, le=1)


class CandidateExtractionResult(ContractModel):
    candidates: list[CandidateCompany] = Field(default_factory=list)
    total_results_processed: int = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def evidence_hash(url: str, snippet: str) -> str:
    return hashlib.sha256(f"{url}:{snippet}".encode("utf-8")).hexdigest()


class EvidenceChunk(ContractModel):
    """A hashed, source-typed snippet of text. Immutable once created."""

    url: str
    title: str = ""
    snippet: str
    source_type: EvidenceSourceType = EvidenceSourceType.OTHER
    fetched_at: datetime = Field(default_factory=_utcnow)
    hash: str

    model_config = ConfigDict(frozen=True)

    @classmethod
    def create(
        cls,
        *,
        url: str,
        title: str,
        snippet: str,
        source_type: EvidenceSourceType,
        fetched_at: datetime | None = None,
    ) -> EvidenceChunk:
        return cls(
            url=url,
            title=title,
            snippet=snippet,
            source_type=source_type,
            fetched_at=fetched_at or _utcnow(),
            hash=evidence_hash(url, snippet),
        )

    @property
    def is_primary(self) -> bool:
        return self.source_type in PRIMARY_SOURCE_TYPES


class FetchedEvidence(ContractModel):
    """All evidence chunks gathered for one candidate domain."""

    domain: str
    chunks: list[EvidenceChunk] = Field(default_factory=list)

    @property
    def urls(self) -> set[str]:
        return {chunk.url for chunk in self.chunks}

    @property
    def primary_chunks(self) -> list[EvidenceChunk]:
        return [chunk for chunk in self.chunks if chunk.is_primary]

    def text(self) -> str:
        return "\n".join(f"{chunk.title}\n{chunk.snippet}" for chunk in self.chunks)
