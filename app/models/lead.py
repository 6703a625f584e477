"""Lead content and the persisted lead record."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from pydantic import Field

from app.models.base import ContractModel
from app.models.signals import SignalCategory, SignalPriority


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeadAngle(ContractModel):
    title: str
    description: str
    evidence_url: str


class LeadContent(ContractModel):
    """Structured copy generated for a gated candidate."""

    why_now: str
    narrative: list[str] = Field(default_factory=list)
    angles: list[LeadAngle] = Field(default_factory=list)
    opener_short: str
    opener_medium: str
    person_name: str | None = None
    industry: str | None = None
    geo: str | None = None


class TriggeredSignal(ContractModel):
    signal_id: str
    signal_name: str
    category: SignalCategory
    priority: SignalPriority


class LeadStatus(str, Enum):
    NEW = "new"
    SAVED = "saved"
    CONTACTED = "contacted"
    SKIP = "skip"


class LeadRecord(ContractModel):
    """Terminal, citation-backed lead. Only ``status`` changes after creation."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    date: str = Field(description="Run date, YYYY-MM-DD.")
    domain: str
    company_name: str
    industry: str | None = None
    geo: str | None = None
    score: int = Field(ge=0, le=100)
    why_now: str
    triggered_signals: list[TriggeredSignal] = Field(default_factory=list)
    evidence_urls: list[str] = Field(default_factory=list)
    evidence_snippets: list[str] = Field(default_factory=list, max_length=5)
    linkedin_search_url: str
    linkedin_search_query: str
    target_titles: list[str] = Field(default_factory=list)
    opener_short: str
    opener_medium: str
    status: LeadStatus = LeadStatus.NEW
    person_name: str | None = None
    angles: list[LeadAngle] = Field(default_factory=list)
    narrative: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
