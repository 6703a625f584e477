"""SQLModel mappings for persisted runs, leads, lists, configs and domain history."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

import sqlalchemy as sa
from sqlalchemy import Column, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.compiler import compiles
from sqlalchemy.sql import expression
from sqlmodel import Field, SQLModel

from app.models.lead import LeadRecord, LeadStatus
from app.models.lists import DoNotContactEntry, ListAccount, WatchList
from app.models.run import PipelineMode, RunStatus, SignalRun, SignalRunStats


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """SQLite drops tzinfo on round-trip; treat naive values as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


JSON_BACKING_TYPE = sa.JSON().with_variant(JSONB(astext_type=sa.Text()), "postgresql")


class UtcNow(expression.FunctionElement):
    """Dialect-aware server default that pins timestamps to UTC."""

    type = DateTime(timezone=True)
    inherit_cache = True


@compiles(UtcNow)
def _utc_now_default(element, compiler, **kwargs) -> str:  # pragma: no cover - trivial sql generator
    return "CURRENT_TIMESTAMP"


@compiles(UtcNow, "postgresql")
def _utc_now_default_postgres(element, compiler, **kwargs) -> str:  # pragma: no cover
    return "timezone('utc', now())"


class SignalRunRow(SQLModel, table=True):
    __tablename__ = "signal_runs"
    __table_args__ = (sa.Index("ix_signal_runs_user", "user_id"),)

    id: str = Field(sa_column=Column(String(length=64), primary_key=True, nullable=False))
    user_id: str = Field(sa_column=Column(String(length=255), nullable=False))
    mode: str = Field(sa_column=Column(String(length=16), nullable=False))
    list_id: str | None = Field(default=None, sa_column=Column(String(length=255), nullable=True))
    status: str = Field(sa_column=Column(String(length=16), nullable=False))
    started_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )
    finished_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    stats: dict[str, Any] | None = Field(
        default=None, sa_column=Column(JSON_BACKING_TYPE, nullable=True)
    )
    error: str | None = Field(default=None, sa_column=Column(sa.Text(), nullable=True))

    @classmethod
    def from_run(cls, run: SignalRun) -> SignalRunRow:
        return cls(
            id=run.id,
            user_id=run.user_id,
            mode=run.mode.value,
            list_id=run.list_id,
            status=run.status.value,
            started_at=run.started_at,
            finished_at=run.finished_at,
            stats=run.stats.model_dump(mode="json") if run.stats else None,
            error=run.error,
        )

    def to_run(self) -> SignalRun:
        return SignalRun(
            id=self.id,
            user_id=self.user_id,
            mode=PipelineMode(self.mode),
            list_id=self.list_id,
            status=RunStatus(self.status),
            started_at=ensure_utc(self.started_at),
            finished_at=ensure_utc(self.finished_at) if self.finished_at else None,
            stats=SignalRunStats.model_validate(self.stats) if self.stats else None,
            error=self.error,
        )


class LeadRow(SQLModel, table=True):
    """Persisted lead; evidentiary fields live in the JSON payload."""

    __tablename__ = "signal_leads"
    __table_args__ = (
        sa.Index("ix_signal_leads_user_date", "user_id", "date"),
        sa.Index("ix_signal_leads_domain", "domain"),
    )

    id: str = Field(sa_column=Column(String(length=64), primary_key=True, nullable=False))
    user_id: str = Field(sa_column=Column(String(length=255), nullable=False))
    date: str = Field(sa_column=Column(String(length=10), nullable=False))
    domain: str = Field(sa_column=Column(String(length=255), nullable=False))
    company_name: str = Field(sa_column=Column(String(length=255), nullable=False))
    industry: str | None = Field(default=None, sa_column=Column(String(length=255), nullable=True))
    score: int = Field(sa_column=Column(Integer, nullable=False))
    status: str = Field(sa_column=Column(String(length=16), nullable=False))
    payload: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON_BACKING_TYPE, nullable=False)
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True), nullable=False, server_default=UtcNow(), onupdate=UtcNow()
        ),
    )

    @classmethod
    def from_lead(cls, lead: LeadRecord) -> LeadRow:
        return cls(
            id=lead.id,
            user_id=lead.user_id,
            date=lead.date,
            domain=lead.domain,
            company_name=lead.company_name,
            industry=lead.industry,
            score=lead.score,
            status=lead.status.value,
            payload=lead.model_dump(mode="json"),
            created_at=lead.created_at,
            updated_at=lead.updated_at,
        )

    def to_lead(self) -> LeadRecord:
        lead = LeadRecord.model_validate(self.payload)
        return lead.model_copy(
            update={
                "status": LeadStatus(self.status),
                "updated_at": ensure_utc(self.updated_at),
            }
        )


class SeenDomainRow(SQLModel, table=True):
    __tablename__ = "seen_domains"

    user_id: str = Field(sa_column=Column(String(length=255), primary_key=True, nullable=False))
    domain: str = Field(sa_column=Column(String(length=255), primary_key=True, nullable=False))
    last_seen_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )


class DoNotContactRow(SQLModel, table=True):
    __tablename__ = "do_not_contact"

    user_id: str = Field(sa_column=Column(String(length=255), primary_key=True, nullable=False))
    domain: str = Field(sa_column=Column(String(length=255), primary_key=True, nullable=False))
    reason: str | None = Field(default=None, sa_column=Column(String(length=512), nullable=True))
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )

    def to_entry(self) -> DoNotContactEntry:
        return DoNotContactEntry(
            user_id=self.user_id,
            domain=self.domain,
            reason=self.reason,
            created_at=ensure_utc(self.created_at),
        )


class WatchListRow(SQLModel, table=True):
    __tablename__ = "watch_lists"
    __table_args__ = (sa.Index("ix_watch_lists_user", "user_id"),)

    id: str = Field(sa_column=Column(String(length=64), primary_key=True, nullable=False))
    user_id: str = Field(sa_column=Column(String(length=255), nullable=False))
    name: str = Field(sa_column=Column(String(length=255), nullable=False))
    description: str | None = Field(default=None, sa_column=Column(sa.Text(), nullable=True))
    archived: bool = Field(
        default=False,
        sa_column=Column(sa.Boolean(), nullable=False, server_default=sa.false()),
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )

    @classmethod
    def from_list(cls, watch_list: WatchList) -> WatchListRow:
        return cls(
            id=watch_list.id,
            user_id=watch_list.user_id,
            name=watch_list.name,
            description=watch_list.description,
            archived=watch_list.archived,
            created_at=watch_list.created_at,
        )

    def to_list(self, account_count: int = 0) -> WatchList:
        return WatchList(
            id=self.id,
            user_id=self.user_id,
            name=self.name,
            description=self.description,
            archived=self.archived,
            account_count=account_count,
            created_at=ensure_utc(self.created_at),
        )


class ListAccountRow(SQLModel, table=True):
    __tablename__ = "list_accounts"

    list_id: str = Field(sa_column=Column(String(length=64), primary_key=True, nullable=False))
    domain: str = Field(sa_column=Column(String(length=255), primary_key=True, nullable=False))
    company_name: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    added_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )

    def to_account(self) -> ListAccount:
        return ListAccount(
            list_id=self.list_id,
            domain=self.domain,
            company_name=self.company_name,
            added_at=ensure_utc(self.added_at),
        )


class UserConfigRow(SQLModel, table=True):
    """Latest signal configuration per user, stored whole."""

    __tablename__ = "user_configs"

    user_id: str = Field(sa_column=Column(String(length=255), primary_key=True, nullable=False))
    payload: dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON_BACKING_TYPE, nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=UtcNow()),
    )
