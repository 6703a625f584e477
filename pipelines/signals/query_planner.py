"""Turn an ICP and the enabled signal set into search queries."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from app.models.evidence import QueryPlan
from app.models.signals import SignalDefinition, UserConfig
from pipelines.providers import StructuredLLM

logger = logging.getLogger("pipelines.signals.query_planner")

MAX_EXCLUDED_DOMAIN_HINTS = 20
PLANNER_TEMPERATURE = 0.7
PLANNER_MAX_RETRIES = 3

SYSTEM_PROMPT = """You plan web search queries for B2B lead generation. Each query must surface \
public evidence that a company shows one of the buying signals listed by the user.

Rules:
1. Aim every query at one or two related signals and list their ids in targetSignals.
2. Prefer sources that carry evidence: news, press releases, job postings, SEC filings, \
company announcements.
3. Never write LinkedIn-specific queries.
4. Favour recent activity with modifiers such as "announces", "hiring", "raises", or the \
current year.
5. Mix exact phrases with keyword combinations, and add geographic qualifiers when the ICP \
names regions.

Return a QueryPlan: queries (each with query, targetSignals, expectedSourceTypes, rationale), \
icpSummary and signalsSummary."""


def _format_signals(signals: Sequence[SignalDefinition]) -> str:
    lines = []
    for index, signal in enumerate(signals, start=1):
        keywords = ", ".join(signal.query_templates) or "-"
        lines.append(
            f"{index}. [{signal.category.value}/{signal.priority.value}] {signal.name} "
            f"(id: {signal.id}): {signal.question}\n   Keywords: {keywords}"
        )
    return "\n".join(lines)


def build_planner_prompt(
    config: UserConfig,
    signals: Sequence[SignalDefinition],
    recent_domains: Sequence[str] = (),
) -> str:
    icp = config.icp
    size = "Any size"
    if icp.company_size_range is not None:
        low = icp.company_size_range.min or "Any"
        high = icp.company_size_range.max or "Any"
        size = f"{low} - {high} employees"
    exclusions = ""
    if recent_domains:
        hints = ", ".join(list(recent_domains)[:MAX_EXCLUDED_DOMAIN_HINTS])
        exclusions = f"\n\nSkip these recently covered domains: {hints}"
    return f"""Write 20-40 search queries that find companies matching this profile.

OFFER:
{config.offer}

IDEAL CUSTOMER PROFILE:
- Industries: {", ".join(icp.industries) or "Any"}
- Geographies: {", ".join(icp.geos) or "Any"}
- Company size: {size}
- Target roles: {", ".join(icp.target_roles) or "Any"}
- Excluded industries: {", ".join(icp.exclude_industries) or "None"}
- Excluded geographies: {", ".join(icp.exclude_geos) or "None"}

SIGNALS:
{_format_signals(signals)}{exclusions}

Cover every signal, weighting high-priority ones. Focus on the past 90 days."""


async def plan_queries(
    config: UserConfig,
    llm: StructuredLLM,
    recent_domains: Sequence[str] = (),
) -> QueryPlan:
    """Ask the model for a query plan. Provider errors propagate to the caller."""
    signals = config.scoring_signals()
    messages = [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": build_planner_prompt(config, signals, recent_domains)},
    ]
    plan = await llm.complete_structured(
        messages,
        schema=QueryPlan,
        schema_name="QueryPlan",
        max_retries=PLANNER_MAX_RETRIES,
        temperature=PLANNER_TEMPERATURE,
    )
    logger.info(
        "query_planner.planned",
        extra={"queries": len(plan.queries), "signals": len(signals)},
    )
    return plan
