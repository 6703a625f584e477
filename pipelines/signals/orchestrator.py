"""Sequence the signal stages into a hunt or watch run and persist the outcome."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from datetime import date
from pathlib import Path

import httpx

from app.config import Settings, settings
from app.models.evidence import CandidateCompany, FetchedEvidence, SearchResult
from app.models.lead import LeadRecord
from app.models.run import (
    PipelineMode,
    PipelineOptions,
    PipelineResult,
    ProgressCallback,
    RunStatus,
    SignalRunStats,
)
from app.models.signals import UserConfig, load_user_config
from app.observability.metrics import metrics
from app.services.storage.repositories import SignalStore, build_signal_store
from pipelines.providers import (
    RuntimeMode,
    SearchProvider,
    StructuredLLM,
    get_runtime_config,
    get_search_provider,
    get_structured_llm,
)
from pipelines.signals.batching import BatchProgress, notify_progress
from pipelines.signals.candidate_extractor import extract_candidates
from pipelines.signals.domains import (
    DomainExclusions,
    company_name_from_domain,
    normalize_domain,
)
from pipelines.signals.errors import PipelineError
from pipelines.signals.evidence_fetcher import EvidenceFetcher
from pipelines.signals.lead_generator import generate_lead_records
from pipelines.signals.query_planner import plan_queries
from pipelines.signals.retrieval import (
    deduplicate_results,
    execute_search_queries,
    flatten_results,
)
from pipelines.signals.scorer import score_and_gate_candidates, select_top_candidates
from pipelines.signals.signal_evaluator import evaluate_batch

logger = logging.getLogger("pipelines.signals.orchestrator")

STAGE_PLANNING = "Planning queries"
STAGE_SEARCHING = "Executing searches"
STAGE_EXTRACTING = "Extracting candidates"
STAGE_FETCHING = "Fetching evidence"
STAGE_EVALUATING = "Evaluating signals"
STAGE_SCORING = "Scoring candidates"
STAGE_GENERATING = "Generating leads"


class _StageReporter:
    """Adapts the caller's three-argument progress callback to per-stage callbacks."""

    def __init__(self, callback: ProgressCallback | None) -> None:
        self._callback = callback

    def stage(self, name: str) -> BatchProgress:
        def _notify(completed: int, total: int) -> None:
            if self._callback is not None:
                self._callback(name, completed, total)

        return _notify

    def report(self, name: str, completed: int, total: int) -> None:
        if self._callback is not None:
            notify_progress(self.stage(name), completed, total)


def watch_candidates(domains: Sequence[str]) -> list[CandidateCompany]:
    """Seed candidates for watch mode: one per distinct normalized domain."""
    candidates: list[CandidateCompany] = []
    seen: set[str] = set()
    for raw in domains:
        domain = normalize_domain(raw)
        if not domain or domain in seen:
            continue
        seen.add(domain)
        candidates.append(
            CandidateCompany(
                company_name=company_name_from_domain(domain),
                domain=domain,
                source_url=f"https://{domain}",
                snippet="",
                confidence=1.0,
            )
        )
    return candidates


class SignalPipeline:
    """Runs the full signal pipeline against injected providers and storage."""

    def __init__(
        self,
        search: SearchProvider,
        llm: StructuredLLM,
        store: SignalStore,
        fetcher: EvidenceFetcher,
        *,
        settings: Settings = settings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._search = search
        self._llm = llm
        self._store = store
        self._fetcher = fetcher
        self._settings = settings
        self._http_client = http_client

    @property
    def store(self) -> SignalStore:
        return self._store

    async def aclose(self) -> None:
        """Close HTTP resources created by ``build_pipeline``."""
        close_search = getattr(self._search, "aclose", None)
        if close_search is not None:
            await close_search()
        if self._http_client is not None:
            await self._http_client.aclose()

    async def run(
        self,
        config: UserConfig,
        options: PipelineOptions,
        *,
        user_id: str,
    ) -> PipelineResult:
        """Execute one run. Failures come back as a structured result, never as exceptions."""
        stats = SignalRunStats()
        try:
            run = self._store.create_signal_run(user_id, options.mode, list_id=options.list_id)
        except Exception as exc:  # noqa: BLE001 - the caller always gets a result
            message = str(exc) or type(exc).__name__
            logger.error("signal_pipeline.run_create_failed", extra={"user_id": user_id, "reason": message})
            metrics.increment("orchestrator.run_failed")
            return PipelineResult(run_id="", stats=stats, errors=[message])

        reporter = _StageReporter(options.on_progress)
        logger.info(
            "signal_pipeline.started",
            extra={"run_id": run.id, "mode": options.mode.value, "limit": options.limit},
        )
        try:
            with metrics.timer("orchestrator.stage_ms", tags={"stage": "run"}):
                if options.mode is PipelineMode.WATCH:
                    leads = await self._watch(config, options, user_id, stats, reporter)
                else:
                    leads = await self._hunt(config, options, user_id, stats, reporter)
            self._store.update_signal_run(run.id, status=RunStatus.COMPLETED, stats=stats)
        except Exception as exc:  # noqa: BLE001 - converted into a failed run
            return self._fail(run.id, exc, stats)

        metrics.increment("orchestrator.run_completed")
        metrics.gauge("orchestrator.leads_generated", stats.leads_generated)
        logger.info("signal_pipeline.completed", extra={"run_id": run.id, **stats.model_dump()})
        return PipelineResult(run_id=run.id, leads=leads, stats=stats)

    def _fail(self, run_id: str, exc: Exception, stats: SignalRunStats) -> PipelineResult:
        message = str(exc) or type(exc).__name__
        errors = [message]
        logger.error(
            "signal_pipeline.failed",
            extra={"run_id": run_id, "code": getattr(exc, "code", None), "reason": message},
            exc_info=exc,
        )
        metrics.increment("orchestrator.run_failed")
        try:
            self._store.update_signal_run(run_id, status=RunStatus.FAILED, stats=stats, error=message)
        except Exception as update_exc:  # noqa: BLE001 - reported alongside the original error
            update_message = str(update_exc) or type(update_exc).__name__
            logger.error(
                "signal_pipeline.run_update_failed",
                extra={"run_id": run_id, "reason": update_message},
            )
            errors.append(update_message)
        return PipelineResult(run_id=run_id, leads=[], stats=stats, errors=errors)

    async def _hunt(
        self,
        config: UserConfig,
        options: PipelineOptions,
        user_id: str,
        stats: SignalRunStats,
        reporter: _StageReporter,
    ) -> list[LeadRecord]:
        window = self._settings.domain_seen_window_days
        reporter.report(STAGE_PLANNING, 0, 1)
        with metrics.timer("orchestrator.stage_ms", tags={"stage": "plan"}):
            recent = self._store.recent_domains(user_id, days=window)
            plan = await plan_queries(config, self._llm, recent)
        if not plan.queries:
            raise PipelineError("Query planner returned no queries", code="E_NO_QUERIES")
        stats.queries_executed = len(plan.queries)
        reporter.report(STAGE_PLANNING, 1, 1)

        reporter.report(STAGE_SEARCHING, 0, len(plan.queries))
        with metrics.timer("orchestrator.stage_ms", tags={"stage": "search"}):
            retrieval, _ = await execute_search_queries(
                plan.queries,
                self._search,
                max_results_per_query=self._settings.search_results_per_query,
                exclude_domains=config.excluded_domains,
                concurrency=self._settings.search_concurrency,
                delay_seconds=self._settings.search_batch_delay_seconds,
                on_progress=reporter.stage(STAGE_SEARCHING),
            )
        results = deduplicate_results(flatten_results(retrieval))

        reporter.report(STAGE_EXTRACTING, 0, len(results))
        with metrics.timer("orchestrator.stage_ms", tags={"stage": "extract"}):
            candidates = await extract_candidates(
                results,
                self._llm,
                chunk_size=self._settings.extraction_chunk_size,
                min_confidence=self._settings.candidate_min_confidence,
                exclusions=DomainExclusions.default().extended(config.excluded_domains),
                on_progress=reporter.stage(STAGE_EXTRACTING),
            )
        stats.candidates_found = len(candidates)

        fresh: list[CandidateCompany] = []
        for candidate in candidates:
            domain = normalize_domain(candidate.domain)
            if self._store.is_dnc(user_id, domain) or self._store.was_domain_seen_recently(
                user_id, domain, days=window
            ):
                stats.duplicates_skipped += 1
                continue
            fresh.append(candidate)
        stats.candidates_after_dedup = len(fresh)

        leads = await self._qualify(config, options, user_id, fresh, results, stats, reporter)
        for lead in leads:
            self._store.mark_domain_seen(user_id, lead.domain)
        return leads

    async def _watch(
        self,
        config: UserConfig,
        options: PipelineOptions,
        user_id: str,
        stats: SignalRunStats,
        reporter: _StageReporter,
    ) -> list[LeadRecord]:
        seeded = watch_candidates([*options.domains, *self._list_domains(options.list_id, user_id)])
        stats.candidates_found = len(seeded)
        candidates: list[CandidateCompany] = []
        for candidate in seeded:
            if self._store.is_dnc(user_id, candidate.domain):
                stats.duplicates_skipped += 1
                continue
            candidates.append(candidate)
        stats.candidates_after_dedup = len(candidates)
        return await self._qualify(config, options, user_id, candidates, [], stats, reporter)

    def _list_domains(self, list_id: str | None, user_id: str) -> list[str]:
        if not list_id:
            return []
        watch_list = self._store.get_list(list_id)
        if watch_list is None or watch_list.user_id != user_id:
            raise PipelineError(f"Watch list {list_id} not found", code="E_LIST_NOT_FOUND")
        return [account.domain for account in self._store.list_accounts(list_id)]

    async def _qualify(
        self,
        config: UserConfig,
        options: PipelineOptions,
        user_id: str,
        candidates: list[CandidateCompany],
        search_results: Sequence[SearchResult],
        stats: SignalRunStats,
        reporter: _StageReporter,
    ) -> list[LeadRecord]:
        """Shared tail of both modes: evidence, evaluation, gating, generation, persistence."""
        reporter.report(STAGE_FETCHING, 0, len(candidates))
        with metrics.timer("orchestrator.stage_ms", tags={"stage": "fetch"}):
            fetched = await self._fetcher.fetch_for_candidates(
                candidates, search_results, on_progress=reporter.stage(STAGE_FETCHING)
            )
        evidence_map: dict[str, FetchedEvidence] = {item.domain: item for item in fetched}
        stats.evidence_chunks_fetched = sum(len(item.chunks) for item in fetched)

        reporter.report(STAGE_EVALUATING, 0, len(candidates))
        items = [
            (candidate, evidence_map.get(candidate.domain) or FetchedEvidence(domain=candidate.domain))
            for candidate in candidates
        ]
        with metrics.timer("orchestrator.stage_ms", tags={"stage": "evaluate"}):
            reports = await evaluate_batch(
                items, config.signals, self._llm, on_progress=reporter.stage(STAGE_EVALUATING)
            )
        stats.signal_evaluations = len(reports)

        reporter.report(STAGE_SCORING, 0, 1)
        scored, scoring = score_and_gate_candidates(reports, evidence_map, config.signals)
        stats.leads_passed_gate = scoring.passed_gate
        stats.insufficient_evidence = scoring.insufficient_evidence
        stats.disqualified = scoring.disqualified
        reporter.report(STAGE_SCORING, 1, 1)

        top = select_top_candidates(scored, options.limit)
        reporter.report(STAGE_GENERATING, 0, len(top))
        with metrics.timer("orchestrator.stage_ms", tags={"stage": "generate"}):
            leads = await generate_lead_records(
                top,
                config,
                self._llm,
                user_id=user_id,
                run_date=date.today().isoformat(),
                on_progress=reporter.stage(STAGE_GENERATING),
            )
        stats.leads_generated = len(leads)
        self._store.save_leads(leads)
        return leads


def resolve_user_config(
    store: SignalStore, user_id: str, config_path: Path | str | None = None
) -> UserConfig:
    """An explicit file wins, then the user's saved config, then the default YAML."""
    if config_path is not None:
        return load_user_config(config_path)
    stored = store.get_user_config(user_id)
    if stored is not None:
        return stored
    return load_user_config(settings.signal_config_path)


async def run_pipeline(
    config: UserConfig,
    options: PipelineOptions,
    *,
    user_id: str,
    pipeline: SignalPipeline,
) -> PipelineResult:
    return await pipeline.run(config, options, user_id=user_id)


def build_pipeline(
    app_settings: Settings = settings,
    *,
    store: SignalStore | None = None,
) -> SignalPipeline:
    """Wire providers, storage and the evidence fetcher for the configured runtime mode."""
    runtime = get_runtime_config(app_settings)
    fetch_pages = app_settings.evidence_fetch_pages and runtime.mode is RuntimeMode.ONLINE
    http_client = httpx.AsyncClient() if fetch_pages else None
    fetcher = EvidenceFetcher(
        http_client,
        timeout_seconds=app_settings.evidence_fetch_timeout_seconds,
        max_content_length=app_settings.evidence_max_content_length,
        retry_attempts=app_settings.evidence_fetch_retries,
        retry_base_delay=app_settings.evidence_retry_base_delay,
        max_urls_per_domain=app_settings.evidence_max_urls_per_domain,
        concurrency=app_settings.evidence_concurrency,
        delay_seconds=app_settings.evidence_batch_delay_seconds,
        fetch_pages=fetch_pages,
    )
    return SignalPipeline(
        get_search_provider(runtime, app_settings),
        get_structured_llm(runtime, app_settings),
        store if store is not None else build_signal_store(app_settings.database_url),
        fetcher,
        settings=app_settings,
        http_client=http_client,
    )


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Generate evidence-backed leads from buying signals.")
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in PipelineMode],
        default=PipelineMode.HUNT.value,
        help="hunt discovers new companies; watch re-checks --domains.",
    )
    parser.add_argument("--limit", type=int, default=settings.default_lead_limit, help="Maximum leads to generate.")
    parser.add_argument("--domains", default="", help="Comma-separated domains for watch mode.")
    parser.add_argument("--list-id", help="Watch list whose accounts are added to --domains.")
    parser.add_argument(
        "--config",
        type=Path,
        help="Signal config YAML. Defaults to the user's saved config, then SIGNAL_CONFIG_PATH.",
    )
    parser.add_argument("--output", type=Path, help="Optional path for the JSON result.")
    parser.add_argument("--user-id", default=settings.default_user_id, help="Owner of the run and leads.")
    return parser.parse_args(argv)


def _progress_logger(stage: str, completed: int, total: int) -> None:
    logger.info("signal_pipeline.progress", extra={"stage": stage, "completed": completed, "total": total})


async def _run_async(args: argparse.Namespace) -> PipelineResult:
    options = PipelineOptions(
        mode=PipelineMode(args.mode),
        limit=args.limit,
        list_id=args.list_id,
        domains=[item.strip() for item in args.domains.split(",") if item.strip()],
        on_progress=_progress_logger,
    )
    pipeline = build_pipeline()
    try:
        config = resolve_user_config(pipeline.store, args.user_id, args.config)
        return await run_pipeline(config, options, user_id=args.user_id, pipeline=pipeline)
    finally:
        await pipeline.aclose()


def main(argv: Sequence[str] | None = None) -> int:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    args = parse_args(sys.argv[1:] if argv is None else argv)
    try:
        result = asyncio.run(_run_async(args))
    except Exception as exc:  # noqa: BLE001 - configuration and wiring failures
        logger.error("signal_pipeline cli failed: %s (code=%s)", exc, getattr(exc, "code", None))
        return 1
    payload = json.dumps(result.model_dump(mode="json", by_alias=True), indent=2)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(payload, encoding="utf-8")
    else:
        print(payload)
    logger.info(
        "signal_pipeline cli finished run=%s leads=%d errors=%d",
        result.run_id,
        len(result.leads),
        len(result.errors),
    )
    return 1 if result.errors else 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
