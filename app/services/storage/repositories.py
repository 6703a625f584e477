"""Persistence backends for signal runs, leads, watch lists, user configs and domain history."""
# ruff: noqa: UP017

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Any, Protocol

from sqlalchemy import func
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, SQLModel, create_engine, select

from app.config import settings
from app.models.lead import LeadRecord, LeadStatus
from app.models.lists import DoNotContactEntry, ListAccount, WatchList
from app.models.records import (
    DoNotContactRow,
    LeadRow,
    ListAccountRow,
    SeenDomainRow,
    SignalRunRow,
    UserConfigRow,
    WatchListRow,
    ensure_utc,
)
from app.models.run import PipelineMode, RunStatus, SignalRun, SignalRunStats
from app.models.signals import UserConfig
from app.observability.metrics import metrics
from app.services.storage.errors import RecordNotFoundError, SignalStoreError

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SignalStore(Protocol):
    """Persistence contract consumed by the pipeline and the API."""

    def create_signal_run(
        self, user_id: str, mode: PipelineMode, *, list_id: str | None = None
    ) -> SignalRun:
        ...

    def update_signal_run(
        self,
        run_id: str,
        *,
        status: RunStatus,
        stats: SignalRunStats | None = None,
        error: str | None = None,
    ) -> SignalRun:
        ...

    def get_signal_run(self, run_id: str) -> SignalRun | None:
        ...

    def save_leads(self, leads: Sequence[LeadRecord]) -> list[LeadRecord]:
        ...

    def list_leads(
        self,
        user_id: str,
        *,
        date: str | None = None,
        status: LeadStatus | None = None,
        min_score: int | None = None,
        max_score: int | None = None,
        industry: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[LeadRecord]:
        """Leads ordered by score descending; score bounds are inclusive."""
        ...

    def update_lead_status(self, lead_id: str, status: LeadStatus) -> LeadRecord:
        ...

    def create_list(self, user_id: str, name: str, *, description: str | None = None) -> WatchList:
        ...

    def get_lists(self, user_id: str) -> list[WatchList]:
        """Non-archived lists, newest first, with account counts."""
        ...

    def get_list(self, list_id: str) -> WatchList | None:
        ...

    def add_accounts(self, list_id: str, domains: Sequence[str]) -> int:
        """Add normalized domains to a list, ignoring ones already present. Returns the number added."""
        ...

    def list_accounts(self, list_id: str) -> list[ListAccount]:
        ...

    def get_user_config(self, user_id: str) -> UserConfig | None:
        ...

    def save_user_config(self, user_id: str, config: UserConfig) -> UserConfig:
        ...

    def was_domain_seen_recently(self, user_id: str, domain: str, days: int = 30) -> bool:
        ...

    def mark_domain_seen(self, user_id: str, domain: str) -> None:
        ...

    def recent_domains(self, user_id: str, days: int = 30, limit: int = 20) -> list[str]:
        ...

    def is_dnc(self, user_id: str, domain: str) -> bool:
        ...

    def add_dnc(self, user_id: str, domain: str, *, reason: str | None = None) -> None:
        ...

    def list_dnc(self, user_id: str) -> list[DoNotContactEntry]:
        ...


def _lead_matches(
    lead: LeadRecord,
    *,
    date: str | None,
    status: LeadStatus | None,
    min_score: int | None,
    max_score: int | None,
    industry: str | None,
) -> bool:
    return (
        (date is None or lead.date == date)
        and (status is None or lead.status == status)
        and (min_score is None or lead.score >= min_score)
        and (max_score is None or lead.score <= max_score)
        and (industry is None or lead.industry == industry)
    )


class InMemorySignalStore(SignalStore):
    """Thread-safe store used for local development, fixture runs and tests."""

    def __init__(self, *, clock: Clock = _utcnow) -> None:
        self._clock = clock
        self._runs: dict[str, SignalRun] = {}
        self._leads: dict[str, LeadRecord] = {}
        self._seen: dict[tuple[str, str], datetime] = {}
        self._dnc: dict[tuple[str, str], DoNotContactEntry] = {}
        self._lists: dict[str, WatchList] = {}
        self._accounts: dict[str, dict[str, ListAccount]] = {}
        self._configs: dict[str, UserConfig] = {}
        self._lock = Lock()

    def create_signal_run(
        self, user_id: str, mode: PipelineMode, *, list_id: str | None = None
    ) -> SignalRun:
        run = SignalRun(user_id=user_id, mode=mode, list_id=list_id, started_at=self._clock())
        with self._lock:
            self._runs[run.id] = run
        logger.info(
            "signal_store.run_created",
            extra={"run_id": run.id, "mode": mode.value, "backend": "memory"},
        )
        return run

    def update_signal_run(
        self,
        run_id: str,
        *,
        status: RunStatus,
        stats: SignalRunStats | None = None,
        error: str | None = None,
    ) -> SignalRun:
        with self._lock:
            existing = self._runs.get(run_id)
            if existing is None:
                raise RecordNotFoundError(f"Signal run {run_id} not found.")
            updated = existing.model_copy(
                update={
                    "status": status,
                    "stats": stats if stats is not None else existing.stats,
                    "error": error,
                    "finished_at": None if status == RunStatus.RUNNING else self._clock(),
                }
            )
            self._runs[run_id] = updated
        return updated

    def get_signal_run(self, run_id: str) -> SignalRun | None:
        with self._lock:
            return self._runs.get(run_id)

    def save_leads(self, leads: Sequence[LeadRecord]) -> list[LeadRecord]:
        with self._lock:
            for lead in leads:
                self._leads[lead.id] = lead
        metrics.increment("store.leads_persisted", len(leads), tags={"repository": "memory"})
        return list(leads)

    def list_leads(
        self,
        user_id: str,
        *,
        date: str | None = None,
        status: LeadStatus | None = None,
        min_score: int | None = None,
        max_score: int | None = None,
        industry: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[LeadRecord]:
        with self._lock:
            matches = [
                lead
                for lead in self._leads.values()
                if lead.user_id == user_id
                and _lead_matches(
                    lead,
                    date=date,
                    status=status,
                    min_score=min_score,
                    max_score=max_score,
                    industry=industry,
                )
            ]
        matches.sort(key=lambda lead: (lead.score, lead.created_at), reverse=True)
        start = max(0, offset)
        return matches[start:] if limit is None else matches[start : start + max(0, limit)]

    def update_lead_status(self, lead_id: str, status: LeadStatus) -> LeadRecord:
        with self._lock:
            existing = self._leads.get(lead_id)
            if existing is None:
                raise RecordNotFoundError(f"Lead {lead_id} not found.")
            updated = existing.model_copy(update={"status": status, "updated_at": self._clock()})
            self._leads[lead_id] = updated
        return updated

    def create_list(self, user_id: str, name: str, *, description: str | None = None) -> WatchList:
        watch_list = WatchList(
            user_id=user_id, name=name, description=description, created_at=self._clock()
        )
        with self._lock:
            self._lists[watch_list.id] = watch_list
            self._accounts[watch_list.id] = {}
        logger.info("signal_store.list_created", extra={"list_id": watch_list.id, "backend": "memory"})
        return watch_list

    def get_lists(self, user_id: str) -> list[WatchList]:
        with self._lock:
            lists = [
                self._with_count(watch_list)
                for watch_list in self._lists.values()
                if watch_list.user_id == user_id and not watch_list.archived
            ]
        return sorted(lists, key=lambda watch_list: watch_list.created_at, reverse=True)

    def get_list(self, list_id: str) -> WatchList | None:
        with self._lock:
            watch_list = self._lists.get(list_id)
            return self._with_count(watch_list) if watch_list else None

    def add_accounts(self, list_id: str, domains: Sequence[str]) -> int:
        added = 0
        with self._lock:
            accounts = self._accounts.get(list_id)
            if accounts is None:
                raise RecordNotFoundError(f"List {list_id} not found.")
            for domain in domains:
                if domain in accounts:
                    continue
                accounts[domain] = ListAccount(list_id=list_id, domain=domain, added_at=self._clock())
                added += 1
        return added

    def list_accounts(self, list_id: str) -> list[ListAccount]:
        with self._lock:
            accounts = list(self._accounts.get(list_id, {}).values())
        accounts.reverse()
        return sorted(accounts, key=lambda account: account.added_at, reverse=True)

    def get_user_config(self, user_id: str) -> UserConfig | None:
        with self._lock:
            return self._configs.get(user_id)

    def save_user_config(self, user_id: str, config: UserConfig) -> UserConfig:
        with self._lock:
            self._configs[user_id] = config
        return config

    def _with_count(self, watch_list: WatchList) -> WatchList:
        count = len(self._accounts.get(watch_list.id, {}))
        return watch_list.model_copy(update={"account_count": count})

    def was_domain_seen_recently(self, user_id: str, domain: str, days: int = 30) -> bool:
        with self._lock:
            seen_at = self._seen.get((user_id, domain))
        if seen_at is None:
            return False
        return seen_at >= self._clock() - timedelta(days=days)

    def mark_domain_seen(self, user_id: str, domain: str) -> None:
        with self._lock:
            self._seen[(user_id, domain)] = self._clock()

    def recent_domains(self, user_id: str, days: int = 30, limit: int = 20) -> list[str]:
        cutoff = self._clock() - timedelta(days=days)
        with self._lock:
            entries = [
                (seen_at, domain)
                for (owner, domain), seen_at in self._seen.items()
                if owner == user_id and seen_at >= cutoff
            ]
        entries.sort(reverse=True)
        return [domain for _, domain in entries[: max(0, limit)]]

    def is_dnc(self, user_id: str, domain: str) -> bool:
        with self._lock:
            return (user_id, domain) in self._dnc

    def add_dnc(self, user_id: str, domain: str, *, reason: str | None = None) -> None:
        entry = DoNotContactEntry(
            user_id=user_id, domain=domain, reason=reason, created_at=self._clock()
        )
        with self._lock:
            self._dnc[(user_id, domain)] = entry

    def list_dnc(self, user_id: str) -> list[DoNotContactEntry]:
        with self._lock:
            entries = [entry for (owner, _), entry in self._dnc.items() if owner == user_id]
        entries.reverse()
        return sorted(entries, key=lambda entry: entry.created_at, reverse=True)


class SqlSignalStore(SignalStore):
    """SQLModel-backed store for Postgres or SQLite."""

    def __init__(
        self,
        database_url: str,
        *,
        pool_min_size: int | None = None,
        pool_max_size: int | None = None,
        auto_create_schema: bool = False,
        clock: Clock = _utcnow,
    ) -> None:
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlSignalStore.")

        parsed_url = make_url(database_url)
        sync_url, connect_args, drivername = _coerce_sync_database_url(parsed_url)
        pool_min = max(pool_min_size or settings.db_pool_min_size, 1)
        pool_max = max(pool_max_size or settings.db_pool_max_size, pool_min)
        is_sqlite = drivername.startswith("sqlite")
        engine_kwargs: dict[str, Any] = {
            "echo": False,
            "connect_args": connect_args,
            "pool_pre_ping": not is_sqlite,
        }
        if not is_sqlite:
            engine_kwargs["pool_size"] = pool_min
            engine_kwargs["max_overflow"] = max(pool_max - pool_min, 0)

        self._engine: Engine = create_engine(sync_url, **engine_kwargs)
        if auto_create_schema:
            SQLModel.metadata.create_all(self._engine)
        self._clock = clock
        self._metrics_tags = {"repository": "sqlite" if is_sqlite else "postgres"}

    def dispose(self) -> None:
        """Close the underlying SQLAlchemy engine."""
        self._engine.dispose()

    def create_signal_run(
        self, user_id: str, mode: PipelineMode, *, list_id: str | None = None
    ) -> SignalRun:
        run = SignalRun(user_id=user_id, mode=mode, list_id=list_id, started_at=self._clock())
        with self._guard("create_signal_run", "Failed to create signal run."):
            with self._session() as session:
                session.add(SignalRunRow.from_run(run))
                session.commit()
        logger.info(
            "signal_store.run_created",
            extra={"run_id": run.id, "mode": mode.value, "backend": self._metrics_tags["repository"]},
        )
        return run

    def update_signal_run(
        self,
        run_id: str,
        *,
        status: RunStatus,
        stats: SignalRunStats | None = None,
        error: str | None = None,
    ) -> SignalRun:
        with self._guard("update_signal_run", "Failed to update signal run."):
            with self._session() as session:
                row = session.get(SignalRunRow, run_id)
                if row is None:
                    raise RecordNotFoundError(f"Signal run {run_id} not found.")
                row.status = status.value
                if stats is not None:
                    row.stats = stats.model_dump(mode="json")
                row.error = error
                row.finished_at = None if status == RunStatus.RUNNING else self._clock()
                session.add(row)
                session.commit()
                session.refresh(row)
                return row.to_run()

    def get_signal_run(self, run_id: str) -> SignalRun | None:
        with self._guard("get_signal_run", "Failed to load signal run."):
            with self._session() as session:
                row = session.get(SignalRunRow, run_id)
                return row.to_run() if row else None

    def save_leads(self, leads: Sequence[LeadRecord]) -> list[LeadRecord]:
        with self._guard("save_leads", "Failed to persist leads."):
            with self._session() as session:
                for lead in leads:
                    session.merge(LeadRow.from_lead(lead))
                session.commit()
        metrics.increment("store.leads_persisted", len(leads), tags=self._metrics_tags)
        logger.info(
            "signal_store.leads_persisted",
            extra={"count": len(leads), "backend": self._metrics_tags["repository"]},
        )
        return list(leads)

    def list_leads(
        self,
        user_id: str,
        *,
        date: str | None = None,
        status: LeadStatus | None = None,
        min_score: int | None = None,
        max_score: int | None = None,
        industry: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[LeadRecord]:
        with self._guard("list_leads", "Failed to list leads."):
            with self._session() as session:
                statement = select(LeadRow).where(LeadRow.user_id == user_id)
                if date is not None:
                    statement = statement.where(LeadRow.date == date)
                if status is not None:
                    statement = statement.where(LeadRow.status == status.value)
                if min_score is not None:
                    statement = statement.where(LeadRow.score >= min_score)
                if max_score is not None:
                    statement = statement.where(LeadRow.score <= max_score)
                if industry is not None:
                    statement = statement.where(LeadRow.industry == industry)
                statement = statement.order_by(LeadRow.score.desc(), LeadRow.created_at.desc())
                statement = statement.offset(max(0, offset))
                if limit is not None:
                    statement = statement.limit(max(0, limit))
                return [row.to_lead() for row in session.exec(statement).all()]

    def update_lead_status(self, lead_id: str, status: LeadStatus) -> LeadRecord:
        with self._guard("update_lead_status", "Failed to update lead status."):
            with self._session() as session:
                row = session.get(LeadRow, lead_id)
                if row is None:
                    raise RecordNotFoundError(f"Lead {lead_id} not found.")
                row.status = status.value
                row.updated_at = self._clock()
                session.add(row)
                session.commit()
                session.refresh(row)
                return row.to_lead()

    def create_list(self, user_id: str, name: str, *, description: str | None = None) -> WatchList:
        watch_list = WatchList(
            user_id=user_id, name=name, description=description, created_at=self._clock()
        )
        with self._guard("create_list", "Failed to create list."):
            with self._session() as session:
                session.add(WatchListRow.from_list(watch_list))
                session.commit()
        logger.info(
            "signal_store.list_created",
            extra={"list_id": watch_list.id, "backend": self._metrics_tags["repository"]},
        )
        return watch_list

    def get_lists(self, user_id: str) -> list[WatchList]:
        with self._guard("get_lists", "Failed to load lists."):
            with self._session() as session:
                statement = (
                    select(WatchListRow)
                    .where(WatchListRow.user_id == user_id, WatchListRow.archived.is_(False))
                    .order_by(WatchListRow.created_at.desc())
                )
                rows = session.exec(statement).all()
                counts = self._account_counts(session, [row.id for row in rows])
                return [row.to_list(counts.get(row.id, 0)) for row in rows]

    def get_list(self, list_id: str) -> WatchList | None:
        with self._guard("get_list", "Failed to load list."):
            with self._session() as session:
                row = session.get(WatchListRow, list_id)
                if row is None:
                    return None
                return row.to_list(self._account_counts(session, [list_id]).get(list_id, 0))

    def add_accounts(self, list_id: str, domains: Sequence[str]) -> int:
        with self._guard("add_accounts", "Failed to add list accounts."):
            with self._session() as session:
                if session.get(WatchListRow, list_id) is None:
                    raise RecordNotFoundError(f"List {list_id} not found.")
                existing = set(
                    session.exec(
                        select(ListAccountRow.domain).where(ListAccountRow.list_id == list_id)
                    ).all()
                )
                added = 0
                for domain in domains:
                    if domain in existing:
                        continue
                    existing.add(domain)
                    session.add(ListAccountRow(list_id=list_id, domain=domain, added_at=self._clock()))
                    added += 1
                session.commit()
        return added

    def list_accounts(self, list_id: str) -> list[ListAccount]:
        with self._guard("list_accounts", "Failed to load list accounts."):
            with self._session() as session:
                statement = (
                    select(ListAccountRow)
                    .where(ListAccountRow.list_id == list_id)
                    .order_by(ListAccountRow.added_at.desc(), ListAccountRow.domain)
                )
                return [row.to_account() for row in session.exec(statement).all()]

    def get_user_config(self, user_id: str) -> UserConfig | None:
        with self._guard("get_user_config", "Failed to load user config."):
            with self._session() as session:
                row = session.get(UserConfigRow, user_id)
                return UserConfig.model_validate(row.payload) if row else None

    def save_user_config(self, user_id: str, config: UserConfig) -> UserConfig:
        with self._guard("save_user_config", "Failed to save user config."):
            with self._session() as session:
                session.merge(
                    UserConfigRow(
                        user_id=user_id,
                        payload=config.model_dump(mode="json"),
                        updated_at=self._clock(),
                    )
                )
                session.commit()
        return config

    def _account_counts(self, session: Session, list_ids: Sequence[str]) -> dict[str, int]:
        if not list_ids:
            return {}
        statement = (
            select(ListAccountRow.list_id, func.count())
            .where(ListAccountRow.list_id.in_(list_ids))
            .group_by(ListAccountRow.list_id)
        )
        return {list_id: count for list_id, count in session.exec(statement).all()}

    def was_domain_seen_recently(self, user_id: str, domain: str, days: int = 30) -> bool:
        with self._guard("was_domain_seen_recently", "Failed to read domain history."):
            with self._session() as session:
                row = session.get(SeenDomainRow, (user_id, domain))
                if row is None:
                    return False
                return ensure_utc(row.last_seen_at) >= self._clock() - timedelta(days=days)

    def mark_domain_seen(self, user_id: str, domain: str) -> None:
        with self._guard("mark_domain_seen", "Failed to record domain history."):
            with self._session() as session:
                session.merge(
                    SeenDomainRow(user_id=user_id, domain=domain, last_seen_at=self._clock())
                )
                session.commit()

    def recent_domains(self, user_id: str, days: int = 30, limit: int = 20) -> list[str]:
        cutoff = self._clock() - timedelta(days=days)
        with self._guard("recent_domains", "Failed to read domain history."):
            with self._session() as session:
                statement = (
                    select(SeenDomainRow)
                    .where(SeenDomainRow.user_id == user_id)
                    .order_by(SeenDomainRow.last_seen_at.desc())
                )
                rows = session.exec(statement).all()
        recent = [row.domain for row in rows if ensure_utc(row.last_seen_at) >= cutoff]
        return recent[: max(0, limit)]

    def is_dnc(self, user_id: str, domain: str) -> bool:
        with self._guard("is_dnc", "Failed to read do-not-contact list."):
            with self._session() as session:
                return session.get(DoNotContactRow, (user_id, domain)) is not None

    def add_dnc(self, user_id: str, domain: str, *, reason: str | None = None) -> None:
        with self._guard("add_dnc", "Failed to update do-not-contact list."):
            with self._session() as session:
                session.merge(
                    DoNotContactRow(
                        user_id=user_id, domain=domain, reason=reason, created_at=self._clock()
                    )
                )
                session.commit()

    def list_dnc(self, user_id: str) -> list[DoNotContactEntry]:
        with self._guard("list_dnc", "Failed to read do-not-contact list."):
            with self._session() as session:
                statement = (
                    select(DoNotContactRow)
                    .where(DoNotContactRow.user_id == user_id)
                    .order_by(DoNotContactRow.created_at.desc(), DoNotContactRow.domain)
                )
                return [row.to_entry() for row in session.exec(statement).all()]

    @contextmanager
    def _session(self) -> Iterator[Session]:
        with Session(self._engine) as session:
            yield session

    @contextmanager
    def _guard(self, operation: str, message: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            logger.exception(
                "signal_store.error",
                extra={"operation": operation, "backend": self._metrics_tags["repository"]},
            )
            metrics.increment("store.errors", tags={"operation": operation, **self._metrics_tags})
            raise SignalStoreError(message, code="500_INTERNAL") from exc


def _coerce_sync_database_url(url: URL) -> tuple[str, dict[str, Any], str]:
    """Convert async connection strings into sync SQLAlchemy URLs."""
    drivername = url.drivername
    connect_args: dict[str, Any] = {}
    if drivername.endswith("+asyncpg"):
        drivername = drivername.replace("+asyncpg", "+psycopg2")
    elif drivername.endswith("+aiosqlite"):
        drivername = drivername.replace("+aiosqlite", "")
    sync_url = url.set(drivername=drivername)
    query = dict(sync_url.query) if sync_url.query else {}
    removed_ssl = query.pop("ssl", None) is not None
    sync_url = sync_url.set(query=query)
    if drivername.startswith("postgresql") and removed_ssl and "sslmode" not in query:
        connect_args["sslmode"] = "require"
    if drivername.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
    return sync_url.render_as_string(hide_password=False), connect_args, drivername


def build_signal_store(database_url: str | None = None) -> SignalStore:
    """Instantiate a SignalStore using DATABASE_URL when available."""
    resolved_url = database_url or settings.database_url
    if not resolved_url:
        logger.info("signal_store.initialized", extra={"backend": "memory"})
        return InMemorySignalStore()
    store = SqlSignalStore(
        resolved_url,
        pool_min_size=settings.db_pool_min_size,
        pool_max_size=settings.db_pool_max_size,
        auto_create_schema=settings.db_auto_create_schema,
    )
    logger.info("signal_store.initialized", extra={"backend": "database"})
    return store
