"""Watch lists, their accounts and do-not-contact entries."""
# ruff: noqa: UP017

from __future__ import annotations

from datetime import datetime, timezone
from uuid import uuid4

from pydantic import Field

from app.models.base import ContractModel


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class WatchList(ContractModel):
    """Named set of account domains re-checked by watch runs."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    archived: bool = False
    account_count: int = 0
    created_at: datetime = Field(default_factory=_utcnow)


class ListAccount(ContractModel):
    list_id: str
    domain: str
    company_name: str | None = None
    added_at: datetime = Field(default_factory=_utcnow)


class DoNotContactEntry(ContractModel):
    user_id: str
    domain: str
    reason: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
