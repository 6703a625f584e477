from __future__ import annotations

import pytest

from app.models.reports import GateFailureKind
from app.models.signals import EvidenceSourceType, SignalPriority
from pipelines.signals.scorer import (
    max_possible_score,
    score_and_gate_candidates,
    score_candidate,
    select_top_candidates,
)
from tests.helpers.stubs import chunk, default_signals, evidence, report, signal, unknown, yes

NEWS_1 = "https://news.example/acme-1"
NEWS_2 = "https://news.example/acme-2"
PRESS = "https://acme.io/press/launch"


def test_max_possible_score_ignores_disqualifiers_and_disabled():
    signals = default_signals() + [signal("off", weight=10, enabled=False)]
    assert max_possible_score(signals) == (9 + 7 + 6 + 2) * 10


def test_one_high_signal_with_two_cited_urls_passes():
    fetched = evidence("acme.io", chunk(NEWS_1), chunk(NEWS_2))
    scored = score_candidate(report("acme.io", yes("funding", NEWS_1, NEWS_2, confidence=1.0)), fetched, default_signals())

    assert scored.passes_gate
    # (9*1*10 + 1*10) / 240 * 100 = 41.67
    assert scored.score == 42


def test_single_url_without_primary_source_fails_evidence_gate():
    fetched = evidence("acme.io", chunk(NEWS_1))
    scored = score_candidate(report("acme.io", yes("funding", NEWS_1)), fetched, default_signals())

    assert not scored.passes_gate
    assert scored.score == 0
    assert scored.gate_failure_kind is GateFailureKind.INSUFFICIENT_EVIDENCE
    assert scored.gate_failure_reason == "Insufficient evidence: 1 URLs (need 2 or 1 primary source)"
    assert scored.penalties[0].type == "evidence_gate"


def test_single_primary_chunk_satisfies_evidence_gate():
    fetched = evidence("acme.io", chunk(PRESS, source_type=EvidenceSourceType.PRESS_RELEASE))
    scored = score_candidate(report("acme.io", yes("funding", PRESS)), fetched, default_signals())
    assert scored.passes_gate


def test_one_medium_signal_fails_signal_gate_and_two_pass():
    fetched = evidence("acme.io", chunk(NEWS_1), chunk(NEWS_2))
    one = score_candidate(report("acme.io", yes("hiring", NEWS_1, NEWS_2)), fetched, default_signals())
    assert not one.passes_gate
    assert one.gate_failure_kind is GateFailureKind.INSUFFICIENT_SIGNALS
    assert one.gate_failure_reason == "Insufficient signals: 0 high, 1 medium (need 1 high or 2 medium)"

    two = score_candidate(
        report("acme.io", yes("hiring", NEWS_1), yes("launch", NEWS_2)), fetched, default_signals()
    )
    assert two.passes_gate


def test_low_priority_signals_never_satisfy_signal_gate():
    fetched = evidence("acme.io", chunk(NEWS_1), chunk(NEWS_2))
    scored = score_candidate(report("acme.io", yes("low_buzz", NEWS_1, NEWS_2)), fetched, default_signals())
    assert scored.gate_failure_kind is GateFailureKind.INSUFFICIENT_SIGNALS


def test_disqualified_report_scores_zero_regardless_of_positives():
    fetched = evidence("acme.io", chunk(NEWS_1), chunk(NEWS_2))
    raw = report("acme.io", yes("funding", NEWS_1, NEWS_2), yes("bankrupt", NEWS_1)).model_copy(
        update={"disqualified": True, "disqualifier_reason": "Chapter 11"}
    )

    scored = score_candidate(raw, fetched, default_signals())

    assert scored.score == 0
    assert scored.gate_failure_reason == "Disqualified: Chapter 11"
    assert scored.penalties[0].amount == 100


def test_disqualified_without_reason_uses_default_text():
    raw = report("acme.io").model_copy(update={"disqualified": True})
    scored = score_candidate(raw, evidence("acme.io"), default_signals())
    assert scored.gate_failure_reason == "Disqualified: Disqualifier triggered"


def test_adding_evidence_never_turns_pass_into_fail():
    signals = default_signals()
    raw = report("acme.io", yes("funding", NEWS_1, NEWS_2))
    base = evidence("acme.io", chunk(NEWS_1), chunk(NEWS_2))
    richer = evidence("acme.io", chunk(NEWS_1), chunk(NEWS_2), chunk(PRESS, source_type=EvidenceSourceType.PRESS_RELEASE))

    assert score_candidate(raw, base, signals).passes_gate
    assert score_candidate(raw, richer, signals).passes_gate


def test_adding_positive_match_never_turns_pass_into_fail():
    signals = default_signals()
    fetched = evidence("acme.io", chunk(NEWS_1), chunk(NEWS_2))
    before = score_candidate(report("acme.io", yes("funding", NEWS_1, NEWS_2)), fetched, signals)
    after = score_candidate(
        report("acme.io", yes("funding", NEWS_1, NEWS_2), yes("launch", NEWS_1)), fetched, signals
    )
    assert before.passes_gate and after.passes_gate
    assert after.score >= 0


def test_score_is_clamped_to_100():
    signals = [signal("only", priority=SignalPriority.HIGH, weight=1)]
    fetched = evidence("acme.io", chunk(NEWS_1), chunk(NEWS_2))
    scored = score_candidate(report("acme.io", yes("only", NEWS_1, NEWS_2, confidence=1.0)), fetched, signals)
    assert scored.score == 100


def test_score_and_gate_sorts_and_counts():
    signals = default_signals()
    reports = [
        report("weak.io", yes("hiring", "https://weak.io/a")),
        report("strong.io", yes("funding", "https://strong.io/a", "https://strong.io/b")),
        report("bad.io").model_copy(update={"disqualified": True, "disqualifier_reason": "Shut down"}),
        report("mid.io", yes("hiring", "https://mid.io/a"), yes("launch", "https://mid.io/b"), unknown("funding")),
    ]
    evidence_map = {
        "weak.io": evidence("weak.io", chunk("https://weak.io/a")),
        "strong.io": evidence("strong.io", chunk("https://strong.io/a"), chunk("https://strong.io/b")),
        "mid.io": evidence("mid.io", chunk("https://mid.io/a"), chunk("https://mid.io/b")),
    }

    scored, stats = score_and_gate_candidates(reports, evidence_map, signals)

    assert [c.report.domain for c in scored[:2]] == ["mid.io", "strong.io"]
    assert stats.total == 4
    assert stats.passed_gate == 2
    assert stats.failed_gate == 2
    assert stats.disqualified == 1
    assert stats.insufficient_evidence == 1

    top = select_top_candidates(scored, 1)
    assert [c.report.domain for c in top] == ["mid.io"]
    assert select_top_candidates(scored, 10) == [c for c in scored if c.passes_gate]


@pytest.mark.parametrize("limit", [0, -3])
def test_select_top_candidates_with_non_positive_limit(limit):
    assert select_top_candidates([], limit) == []


def test_disabled_signal_neither_scores_nor_satisfies_signal_gate():
    signals = [*default_signals(), signal("paused_raise", priority=SignalPriority.HIGH, weight=10, enabled=False)]
    fetched = evidence("acme.io", chunk(NEWS_1), chunk(NEWS_2))

    scored = score_candidate(report("acme.io", yes("paused_raise", NEWS_1, NEWS_2, confidence=1.0)), fetched, signals)

    assert not scored.passes_gate
    assert scored.gate_failure_kind is GateFailureKind.INSUFFICIENT_SIGNALS
    # Only the overall confidence contributes: 1.0 * 10
    assert scored.penalties[0].amount == 10
