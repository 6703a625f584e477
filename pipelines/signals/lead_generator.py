"""Synthesize outreach-ready lead records from gated candidates."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from urllib.parse import quote

from app.models.lead import LeadContent, LeadRecord, TriggeredSignal
from app.models.reports import ScoredCandidate
from app.models.signals import SignalCategory, SignalPriority, UserConfig
from app.observability.metrics import metrics
from pipelines.providers import StructuredLLM
from pipelines.signals.batching import BatchProgress, notify_progress

logger = logging.getLogger("pipelines.signals.lead_generator")

GENERATOR_TEMPERATURE = 0.5
GENERATOR_MAX_RETRIES = 2
MAX_ANGLES = 3
MAX_NARRATIVE_BULLETS = 8
MAX_FALLBACK_BULLETS = 5
MAX_EVIDENCE_SNIPPETS = 5
SAFE_URI_CHARS = "-_.!~*'()"

SYSTEM_PROMPT = """You write evidence-backed B2B outreach material.

Rules:
1. Every claim in whyNow and narrative must come from the evidence provided; cite it as \
[Source](url).
2. Never invent facts. Never invent people: personName is null unless a name appears in the \
evidence.
3. Only set industry and geo when the evidence states them; otherwise null.
4. Each angle must reference the URL of the evidence it relies on in evidenceUrl.

Output:
- whyNow: one sentence on why this is the right moment, with a citation
- narrative: 5-8 cited bullets
- angles: up to 3 outreach angles tied to evidence
- openerShort: 2-3 sentences, under 50 words
- openerMedium: 4-5 sentences, under 100 words
- personName, industry, geo: as described above"""


def linkedin_search_url(company_name: str, titles: Sequence[str]) -> str:
    keywords = f'"{company_name}" {" OR ".join(titles)}'
    return (
        "https://www.linkedin.com/search/results/people/"
        f"?keywords={quote(keywords, safe=SAFE_URI_CHARS)}&origin=GLOBAL_SEARCH_HEADER"
    )


def linkedin_search_query(company_name: str, titles: Sequence[str]) -> str:
    titles_clause = " OR ".join(f'"{title}"' for title in titles)
    return f'"{company_name}" ({titles_clause})'


def build_generator_messages(candidate: ScoredCandidate, config: UserConfig) -> list[dict[str, str]]:
    report = candidate.report
    evidence_text = "\n\n".join(
        f"[Evidence {index}] {chunk.url}\nType: {chunk.source_type.value}\nContent: {chunk.snippet}"
        for index, chunk in enumerate(candidate.evidence.chunks, start=1)
    )
    signal_text = "\n".join(
        f"- {match.signal_name}: {match.reasoning}\n  Evidence: {', '.join(match.evidence_urls)}"
        for match in report.positive_matches()
    )
    user_prompt = f"""Write lead content for {report.company_name} ({report.domain}).

OFFER:
{config.offer}

TARGET ROLES:
{", ".join(config.icp.target_roles) or "Any"}

TRIGGERED SIGNALS:
{signal_text or "-"}

EVIDENCE:
{evidence_text or "-"}"""
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_prompt},
    ]


def _appears_in(value: str | None, haystack: str) -> str | None:
    if value is None:
        return None
    stripped = value.strip()
    if not stripped or stripped.lower() not in haystack:
        return None
    return stripped


def sanitize_content(content: LeadContent, candidate: ScoredCandidate) -> LeadContent:
    """Drop anything the evidence does not back: uncited angles and unsupported facts."""
    evidence_urls = candidate.evidence.urls
    evidence_text = candidate.evidence.text().lower()
    angles = [angle for angle in content.angles if angle.evidence_url in evidence_urls]
    return content.model_copy(
        update={
            "angles": angles[:MAX_ANGLES],
            "narrative": content.narrative[:MAX_NARRATIVE_BULLETS],
            "person_name": _appears_in(content.person_name, evidence_text),
            "industry": _appears_in(content.industry, evidence_text),
            "geo": _appears_in(content.geo, evidence_text),
        }
    )


def fallback_content(candidate: ScoredCandidate) -> LeadContent:
    """Minimal deterministic content so a gated candidate is never dropped."""
    report = candidate.report
    positives = report.positive_matches()
    name = report.company_name
    signal_names = ", ".join(match.signal_name for match in positives)
    about = f" ({signal_names})" if signal_names else ""
    return LeadContent(
        why_now=f"{name} shows recent activity matching your target signals.",
        narrative=[
            f"{match.signal_name}: {match.reasoning}" for match in positives[:MAX_FALLBACK_BULLETS]
        ],
        angles=[],
        opener_short=f"I noticed some recent developments at {name} that might be relevant.",
        opener_medium=(
            f"I noticed some recent developments at {name}{about} that align with what we help "
            "companies with. Would love to learn more about your current priorities."
        ),
        person_name=None,
        industry=None,
        geo=None,
    )


async def generate_lead_content(
    candidate: ScoredCandidate,
    config: UserConfig,
    llm: StructuredLLM,
) -> LeadContent:
    try:
        content = await llm.complete_structured(
            build_generator_messages(candidate, config),
            schema=LeadContent,
            schema_name="LeadContent",
            max_retries=GENERATOR_MAX_RETRIES,
            temperature=GENERATOR_TEMPERATURE,
        )
    except Exception as exc:  # noqa: BLE001 - fall back to deterministic copy
        logger.warning(
            "lead_generator.fallback",
            extra={"domain": candidate.report.domain, "reason": str(exc) or type(exc).__name__},
        )
        metrics.increment("lead_generator.fallback")
        return fallback_content(candidate)
    return sanitize_content(content, candidate)


def triggered_signals(candidate: ScoredCandidate, config: UserConfig) -> list[TriggeredSignal]:
    triggered: list[TriggeredSignal] = []
    for match in candidate.report.positive_matches():
        signal = config.signal_by_id(match.signal_id)
        triggered.append(
            TriggeredSignal(
                signal_id=match.signal_id,
                signal_name=match.signal_name,
                category=signal.category if signal else SignalCategory.PRODUCT_STRATEGY,
                priority=signal.priority if signal else SignalPriority.MEDIUM,
            )
        )
    return triggered


def build_lead_record(
    candidate: ScoredCandidate,
    content: LeadContent,
    config: UserConfig,
    *,
    user_id: str,
    run_date: str,
) -> LeadRecord:
    report = candidate.report
    titles = list(config.icp.target_roles)
    cited: list[str] = []
    for match in report.positive_matches():
        for url in match.evidence_urls:
            if url not in cited:
                cited.append(url)
    return LeadRecord(
        user_id=user_id,
        date=run_date,
        domain=report.domain,
        company_name=report.company_name,
        industry=content.industry,
        geo=content.geo,
        score=candidate.score,
        why_now=content.why_now,
        triggered_signals=triggered_signals(candidate, config),
        evidence_urls=cited,
        evidence_snippets=[chunk.snippet for chunk in candidate.evidence.chunks[:MAX_EVIDENCE_SNIPPETS]],
        linkedin_search_url=linkedin_search_url(report.company_name, titles),
        linkedin_search_query=linkedin_search_query(report.company_name, titles),
        target_titles=titles,
        opener_short=content.opener_short,
        opener_medium=content.opener_medium,
        person_name=content.person_name,
        angles=content.angles,
        narrative=content.narrative,
    )


async def generate_lead_records(
    candidates: Sequence[ScoredCandidate],
    config: UserConfig,
    llm: StructuredLLM,
    *,
    user_id: str,
    run_date: str,
    on_progress: BatchProgress | None = None,
) -> list[LeadRecord]:
    """Generate leads one candidate at a time, reporting progress after each."""
    leads: list[LeadRecord] = []
    total = len(candidates)
    for completed, candidate in enumerate(candidates, start=1):
        content = await generate_lead_content(candidate, config, llm)
        leads.append(
            build_lead_record(candidate, content, config, user_id=user_id, run_date=run_date)
        )
        if on_progress is not None:
            notify_progress(on_progress, completed, total)
    return leads
