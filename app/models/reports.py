"""Signal evaluation and scoring models."""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import Field

from app.models.base import ContractModel
from app.models.evidence import FetchedEvidence

MatchResult = Literal["yes", "no", "unknown"]


class SignalMatch(ContractModel):
    """Verdict on one signal for one candidate."""

    signal_id: str
    signal_name: str
    result: MatchResult
    confidence: float = Field(ge=0, le=1)
    evidence_urls: list[str] = Field(default_factory=list)
    evidence_snippets: list[str] = Field(default_factory=list)
    reasoning: str = ""

    @property
    def is_positive(self) -> bool:
        return self.result == "yes"


class SignalMatchReport(ContractModel):
    domain: str
    company_name: str
    matches: list[SignalMatch] = Field(default_factory=list)
    overall_confidence: float = Field(default=0.0, ge=0, le=1)
    disqualified: bool = False
    disqualifier_reason: str | None = None

    def positive_matches(self) -> list[SignalMatch]:
        return [match for match in self.matches if match.is_positive]


class GateFailureKind(str, Enum):
    DISQUALIFIED = "disqualified"
    INSUFFICIENT_EVIDENCE = "insufficient_evidence"
    INSUFFICIENT_SIGNALS = "insufficient_signals"


class Penalty(ContractModel):
    type: str
    description: str
    amount: float


class ScoredCandidate(ContractModel):
    report: SignalMatchReport
    evidence: FetchedEvidence
    score: int = Field(ge=0, le=100)
    passes_gate: bool
    gate_failure_reason: str | None = None
    gate_failure_kind: GateFailureKind | None = None
    penalties: list[Penalty] = Field(default_factory=list)


class ScoringStats(ContractModel):
    total: int = 0
    passed_gate: int = 0
    failed_gate: int = 0
    disqualified: int = 0
    insufficient_evidence: int = 0
