"""Judge each signal strictly from fetched evidence, then validate the model's citations."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from app.models.evidence import CandidateCompany, FetchedEvidence
from app.models.reports import SignalMatch, SignalMatchReport
from app.models.signals import SignalDefinition, signal_index
from app.observability.metrics import metrics
from pipelines.providers import StructuredLLM
from pipelines.signals.batching import BatchProgress, notify_progress

logger = logging.getLogger("pipelines.signals.signal_evaluator")

EVALUATOR_TEMPERATURE = 0.2
EVALUATOR_MAX_RETRIES = 3
DEMOTION_MARKER = " [DEMOTED: cited evidence not found]"

SYSTEM_PROMPT = """You evaluate B2B buying signals for one company using ONLY the evidence \
chunks provided.

Rules:
1. Answer "yes" only when an evidence chunk explicitly supports the signal, and cite the URL \
of every supporting chunk in evidenceUrls together with the supporting text in evidenceSnippets.
2. Answer "no" when the evidence contradicts the signal and "unknown" when it is insufficient. \
When in doubt, answer "unknown".
3. Never invent facts, numbers or people that are not in the evidence.
4. Evaluate disqualifier signals strictly: any supporting evidence means "yes".

Confidence: 0.9-1.0 when the evidence states the condition outright, 0.7-0.8 when it strongly \
implies it, 0.5-0.6 for borderline support. Anything weaker is "unknown".

Return a SignalMatchReport with one match per signal."""


def _format_evidence(evidence: FetchedEvidence) -> str:
    if not evidence.chunks:
        return "No evidence chunks available - every signal must be unknown."
    return "\n\n".join(
        f"[Evidence {index}]\nURL: {chunk.url}\nSource Type: {chunk.source_type.value}\n"
        f"Date: {chunk.fetched_at.isoformat()}\nContent: {chunk.snippet}"
        for index, chunk in enumerate(evidence.chunks, start=1)
    )


def order_signals(signals: Sequence[SignalDefinition]) -> list[SignalDefinition]:
    """Enabled signals with disqualifiers last."""
    enabled = [signal for signal in signals if signal.enabled]
    return [s for s in enabled if not s.is_disqualifier] + [s for s in enabled if s.is_disqualifier]


def _format_signals(signals: Sequence[SignalDefinition], company_name: str) -> str:
    lines = []
    for index, signal in enumerate(signals, start=1):
        flag = ", DISQUALIFIER" if signal.is_disqualifier else ""
        lines.append(
            f"{index}. [{signal.id}] {signal.name} ({signal.priority.value}{flag})\n"
            f"   Question: {signal.question.replace('{account}', company_name)}\n"
            f"   Look for: {', '.join(signal.query_templates) or '-'}"
        )
    return "\n\n".join(lines)


def build_evaluator_messages(
    candidate: CandidateCompany,
    evidence: FetchedEvidence,
    signals: Sequence[SignalDefinition],
) -> list[dict[str, str]]:
    ordered = order_signals(signals)
    user_prompt = f"""Evaluate the signals below for {candidate.company_name} ({candidate.domain}).

EVIDENCE ({len(evidence.chunks)} chunks):
{_format_evidence(evidence)}

SIGNALS:
{_format_signals(ordered, candidate.company_name)}

Return a SignalMatchReport with domain "{candidate.domain}", companyName \
"{candidate.company_name}", one match per signal, overallConfidence, disqualified and \
disqualifierReason."""
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]


def _demote(match: SignalMatch) -> SignalMatch:
    return match.model_copy(
        update={
            "result": "unknown",
            "confidence": 0.0,
            "evidence_urls": [],
            "evidence_snippets": [],
            "reasoning": f"{match.reasoning}{DEMOTION_MARKER}",
        }
    )


def validate_report(
    report: SignalMatchReport,
    evidence: FetchedEvidence,
    signals: Sequence[SignalDefinition] | None = None,
) -> SignalMatchReport:
    """Demote every "yes" whose citations are missing or not all present in ``evidence``.

    Overall confidence is recomputed from the surviving positive matches. When ``signals`` is
    given, the disqualified flag is recomputed from them as well.
    """
    valid_urls = evidence.urls
    matches: list[SignalMatch] = []
    demoted = 0
    for match in report.matches:
        if match.is_positive and (
            not match.evidence_urls or not set(match.evidence_urls) <= valid_urls
        ):
            matches.append(_demote(match))
            demoted += 1
        else:
            matches.append(match)
    if demoted:
        metrics.increment("signal_evaluator.demoted", demoted)
        logger.info(
            "signal_evaluator.demoted",
            extra={"domain": report.domain, "demoted": demoted},
        )

    positives = [match for match in matches if match.is_positive]
    overall = sum(match.confidence for match in positives) / len(positives) if positives else 0.0

    disqualified = report.disqualified
    reason = report.disqualifier_reason
    if signals is not None:
        index = signal_index(signal for signal in signals if signal.enabled)
        hits = [
            match
            for match in positives
            if match.signal_id in index and index[match.signal_id].is_disqualifier
        ]
        disqualified = bool(hits)
        if not disqualified:
            reason = None
        elif not reason:
            reason = hits[0].reasoning or hits[0].signal_name
    elif not positives:
        disqualified, reason = False, None

    return report.model_copy(
        update={
            "matches": matches,
            "overall_confidence": overall,
            "disqualified": disqualified,
            "disqualifier_reason": reason,
        }
    )


def fallback_report(
    candidate: CandidateCompany,
    signals: Sequence[SignalDefinition],
    reason: str,
) -> SignalMatchReport:
    """All-unknown report used when the model call fails."""
    return SignalMatchReport(
        domain=candidate.domain,
        company_name=candidate.company_name,
        matches=[
            SignalMatch(
                signal_id=signal.id,
                signal_name=signal.name,
                result="unknown",
                confidence=0.0,
                reasoning=f"Evaluation failed: {reason}",
            )
            for signal in order_signals(signals)
        ],
        overall_confidence=0.0,
        disqualified=False,
        disqualifier_reason=None,
    )


async def evaluate_signals(
    candidate: CandidateCompany,
    evidence: FetchedEvidence,
    signals: Sequence[SignalDefinition],
    llm: StructuredLLM,
) -> SignalMatchReport:
    try:
        report = await llm.complete_structured(
            build_evaluator_messages(candidate, evidence, signals),
            schema=SignalMatchReport,
            schema_name="SignalMatchReport",
            max_retries=EVALUATOR_MAX_RETRIES,
            temperature=EVALUATOR_TEMPERATURE,
        )
    except Exception as exc:  # noqa: BLE001 - one failed candidate degrades to all-unknown
        reason = str(exc) or type(exc).__name__
        logger.warning(
            "signal_evaluator.failed",
            extra={"domain": candidate.domain, "reason": reason},
        )
        metrics.increment("signal_evaluator.failed")
        return fallback_report(candidate, signals, reason)
    pinned = report.model_copy(
        update={"domain": candidate.domain, "company_name": candidate.company_name}
    )
    return validate_report(pinned, evidence, signals)


async def evaluate_batch(
    items: Sequence[tuple[CandidateCompany, FetchedEvidence]],
    signals: Sequence[SignalDefinition],
    llm: StructuredLLM,
    on_progress: BatchProgress | None = None,
) -> list[SignalMatchReport]:
    """Evaluate candidates one after another, reporting progress after each."""
    reports: list[SignalMatchReport] = []
    total = len(items)
    for completed, (candidate, evidence) in enumerate(items, start=1):
        reports.append(await evaluate_signals(candidate, evidence, signals, llm))
        if on_progress is not None:
            notify_progress(on_progress, completed, total)
    return reports
