from __future__ import annotations

import pytest

from app.clients.errors import LLMProviderError
from app.models.lead import LeadContent
from app.models.reports import ScoredCandidate
from app.models.signals import SignalPriority
from pipelines.signals.lead_generator import (
    build_lead_record,
    fallback_content,
    generate_lead_records,
    linkedin_search_query,
    linkedin_search_url,
    sanitize_content,
)
from tests.helpers.stubs import StubLLM, chunk, evidence, report, unknown, user_config, yes

URL_A = "https://acme.io/press/raise"
URL_B = "https://acme.io/careers/ae"


def _scored(score: int = 55) -> ScoredCandidate:
    fetched = evidence(
        "acme.io",
        chunk(URL_A, "Acme Analytics raised a Series B to grow its fintech platform in Austin."),
        chunk(URL_B, "Hiring account executives who report to Jordan Lee."),
    )
    return ScoredCandidate(
        report=report("acme.io", yes("funding", URL_A), yes("hiring", URL_B, URL_A), unknown("launch")),
        evidence=fetched,
        score=score,
        passes_gate=True,
    )


def _content(**overrides) -> dict:
    payload = {
        "whyNow": "Acme just raised [Source](https://acme.io/press/raise).",
        "narrative": [f"Point {i}" for i in range(10)],
        "angles": [
            {"title": "Grounded", "description": "d", "evidenceUrl": URL_A},
            {"title": "Invented", "description": "d", "evidenceUrl": "https://made-up.io"},
        ],
        "openerShort": "Congrats on the raise.",
        "openerMedium": "Congrats on the raise. Longer version.",
        "personName": "Jordan Lee",
        "industry": "Fintech",
        "geo": "London",
    }
    payload.update(overrides)
    return payload


def test_linkedin_helpers_quote_company_and_titles():
    titles = ["VP of Sales", "CRO"]
    assert linkedin_search_query("Acme", titles) == '"Acme" ("VP of Sales" OR "CRO")'
    url = linkedin_search_url("Acme & Co", titles)
    assert url.startswith("https://www.linkedin.com/search/results/people/?keywords=")
    assert "%22Acme%20%26%20Co%22" in url
    assert url.endswith("&origin=GLOBAL_SEARCH_HEADER")


def test_sanitize_drops_uncited_angles_and_unsupported_facts():
    content = LeadContent.model_validate(_content())

    cleaned = sanitize_content(content, _scored())

    assert [a.title for a in cleaned.angles] == ["Grounded"]
    assert len(cleaned.narrative) == 8
    assert cleaned.person_name == "Jordan Lee"
    assert cleaned.industry == "Fintech"
    assert cleaned.geo is None


def test_fallback_content_mentions_triggered_signals():
    content = fallback_content(_scored())
    assert "Funding, Hiring" in content.opener_medium
    assert content.angles == []
    assert content.person_name is None
    assert len(content.narrative) == 2


def test_build_lead_record_collects_citations_and_metadata():
    config = user_config()
    scored = _scored()

    lead = build_lead_record(
        scored, fallback_content(scored), config, user_id="u1", run_date="2026-10-17"
    )

    assert lead.domain == "acme.io"
    assert lead.score == 55
    assert lead.evidence_urls == [URL_A, URL_B]
    assert set(lead.evidence_urls) <= scored.evidence.urls
    assert [s.signal_id for s in lead.triggered_signals] == ["funding", "hiring"]
    assert lead.triggered_signals[0].priority is SignalPriority.HIGH
    assert lead.target_titles == ["VP of Sales", "Chief Revenue Officer"]
    assert lead.status.value == "new"
    assert lead.date == "2026-10-17"


@pytest.mark.asyncio
async def test_generate_lead_records_uses_model_output_then_fallback():
    llm = StubLLM({"LeadContent": [_content(), LLMProviderError("timeout")]})
    progress: list[tuple[int, int]] = []

    leads = await generate_lead_records(
        [_scored(70), _scored(60)],
        user_config(),
        llm,
        user_id="u1",
        run_date="2026-10-17",
        on_progress=lambda d, t: progress.append((d, t)),
    )

    assert [lead.score for lead in leads] == [70, 60]
    assert leads[0].why_now.startswith("Acme just raised")
    assert [a.evidence_url for a in leads[0].angles] == [URL_A]
    assert "recent activity" in leads[1].why_now
    assert progress == [(1, 2), (2, 2)]
    assert llm.calls[0]["temperature"] == 0.5
    assert len({lead.id for lead in leads}) == 2
