"""Pipeline run bookkeeping."""
# ruff: noqa: UP017

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import ConfigDict, Field

from app.models.base import ContractModel
from app.models.lead import LeadRecord

ProgressCallback = Callable[[str, int, int], None]


class PipelineMode(str, Enum):
    HUNT = "hunt"
    WATCH = "watch"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class SignalRunStats(ContractModel):
    """Run statistics reporting surface."""

    queries_executed: int = 0
    candidates_found: int = 0
    candidates_after_dedup: int = 0
    evidence_chunks_fetched: int = 0
    signal_evaluations: int = 0
    leads_generated: int = 0
    leads_passed_gate: int = 0
    insufficient_evidence: int = 0
    disqualified: int = 0
    duplicates_skipped: int = 0


class SignalRun(ContractModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    mode: PipelineMode
    list_id: str | None = None
    status: RunStatus = RunStatus.RUNNING
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    stats: SignalRunStats | None = None
    error: str | None = None


class PipelineOptions(ContractModel):
    mode: PipelineMode = PipelineMode.HUNT
    limit: int = Field(default=50, ge=1)
    list_id: str | None = None
    domains: list[str] = Field(default_factory=list)
    on_progress: ProgressCallback | None = Field(default=None, exclude=True)

    model_config = ConfigDict(arbitrary_types_allowed=True)


class PipelineResult(ContractModel):
    run_id: str
    leads: list[LeadRecord] = Field(default_factory=list)
    stats: SignalRunStats = Field(default_factory=SignalRunStats)
    errors: list[str] = Field(default_factory=list)
