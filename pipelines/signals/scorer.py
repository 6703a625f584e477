"""Deterministic scoring with evidence and signal-sufficiency gates."""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping, Sequence

from app.models.evidence import FetchedEvidence
from app.models.reports import (
    GateFailureKind,
    Penalty,
    ScoredCandidate,
    ScoringStats,
    SignalMatch,
    SignalMatchReport,
)
from app.models.signals import SignalDefinition, SignalPriority, signal_index
from app.observability.metrics import metrics

logger = logging.getLogger("pipelines.signals.scorer")

MIN_EVIDENCE_URLS = 2
MIN_PRIMARY_EVIDENCE = 1
MIN_HIGH_PRIORITY = 1
MIN_MEDIUM_PRIORITY = 2
SIGNAL_SCALE = 10
DISQUALIFIER_PENALTY = 100


def max_possible_score(signals: Sequence[SignalDefinition]) -> float:
    """Normalization denominator: every enabled, non-disqualifier signal at full confidence."""
    return sum(
        signal.weight * SIGNAL_SCALE
        for signal in signals
        if signal.enabled and not signal.is_disqualifier
    )


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _evidence_gate(
    evidence: FetchedEvidence, positives: Sequence[SignalMatch]
) -> str | None:
    cited = {url for match in positives for url in match.evidence_urls}
    if len(cited) >= MIN_EVIDENCE_URLS:
        return None
    if len(evidence.primary_chunks) >= MIN_PRIMARY_EVIDENCE:
        return None
    return (
        f"Insufficient evidence: {len(cited)} URLs "
        f"(need {MIN_EVIDENCE_URLS} or {MIN_PRIMARY_EVIDENCE} primary source)"
    )


def _signal_gate(
    positives: Sequence[SignalMatch], index: Mapping[str, SignalDefinition]
) -> str | None:
    priorities = [index[match.signal_id].priority for match in positives if match.signal_id in index]
    high = priorities.count(SignalPriority.HIGH)
    medium = priorities.count(SignalPriority.MEDIUM)
    if high >= MIN_HIGH_PRIORITY or medium >= MIN_MEDIUM_PRIORITY:
        return None
    return (
        f"Insufficient signals: {high} high, {medium} medium "
        f"(need {MIN_HIGH_PRIORITY} high or {MIN_MEDIUM_PRIORITY} medium)"
    )


def score_candidate(
    report: SignalMatchReport,
    evidence: FetchedEvidence,
    signals: Sequence[SignalDefinition],
) -> ScoredCandidate:
    """Score one validated report. Disqualified or gate-failed candidates always score 0."""
    if report.disqualified:
        description = report.disqualifier_reason or "Disqualifier triggered"
        return ScoredCandidate(
            report=report,
            evidence=evidence,
            score=0,
            passes_gate=False,
            gate_failure_reason=f"Disqualified: {description}",
            gate_failure_kind=GateFailureKind.DISQUALIFIED,
            penalties=[
                Penalty(type="disqualifier", description=description, amount=DISQUALIFIER_PENALTY)
            ],
        )

    index = signal_index(signal for signal in signals if signal.enabled)
    positives = report.positive_matches()
    base_score = sum(
        index[match.signal_id].weight * match.confidence * SIGNAL_SCALE
        for match in positives
        if match.signal_id in index
    )
    base_score += report.overall_confidence * SIGNAL_SCALE

    for kind, penalty_type, reason in (
        (GateFailureKind.INSUFFICIENT_EVIDENCE, "evidence_gate", _evidence_gate(evidence, positives)),
        (GateFailureKind.INSUFFICIENT_SIGNALS, "signal_gate", _signal_gate(positives, index)),
    ):
        if reason is not None:
            return ScoredCandidate(
                report=report,
                evidence=evidence,
                score=0,
                passes_gate=False,
                gate_failure_reason=reason,
                gate_failure_kind=kind,
                penalties=[Penalty(type=penalty_type, description=reason, amount=base_score)],
            )

    normalized = _round_half_up(base_score / max(max_possible_score(signals), 1) * 100)
    return ScoredCandidate(
        report=report,
        evidence=evidence,
        score=max(0, min(100, normalized)),
        passes_gate=True,
    )


def score_and_gate_candidates(
    reports: Sequence[SignalMatchReport],
    evidence_map: Mapping[str, FetchedEvidence],
    signals: Sequence[SignalDefinition],
) -> tuple[list[ScoredCandidate], ScoringStats]:
    """Score every report and sort descending by score (stable)."""
    stats = ScoringStats(total=len(reports))
    scored: list[ScoredCandidate] = []
    for report in reports:
        evidence = evidence_map.get(report.domain) or FetchedEvidence(domain=report.domain)
        result = score_candidate(report, evidence, signals)
        scored.append(result)
        if result.passes_gate:
            stats.passed_gate += 1
            continue
        stats.failed_gate += 1
        if result.gate_failure_kind is GateFailureKind.DISQUALIFIED:
            stats.disqualified += 1
        else:
            stats.insufficient_evidence += 1
        logger.info(
            "scorer.gate_failed",
            extra={"domain": report.domain, "reason": result.gate_failure_reason},
        )
    scored.sort(key=lambda candidate: candidate.score, reverse=True)
    metrics.increment("scorer.passed_gate", stats.passed_gate)
    metrics.increment("scorer.failed_gate", stats.failed_gate)
    return scored, stats


def select_top_candidates(scored: Sequence[ScoredCandidate], limit: int) -> list[ScoredCandidate]:
    """Gate-passing candidates only, in the given order, at most ``limit``."""
    return [candidate for candidate in scored if candidate.passes_gate][: max(0, limit)]
