"""Watch list management: create lists, import account domains, browse accounts."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import Field

from app.api.deps import call_store, get_signal_store
from app.config import settings
from app.models.base import ContractModel
from app.models.lists import ListAccount, WatchList
from app.observability.metrics import metrics
from app.services.storage.repositories import SignalStore
from pipelines.signals.domains import partition_domains

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_IMPORT_DOMAINS = 1000
MAX_REPORTED_INVALID = 10


class CreateListRequest(ContractModel):
    name: str = Field(min_length=1, max_length=255)
    description: str | None = None
    user_id: str | None = None


class ImportDomainsRequest(ContractModel):
    list_id: str
    domains: list[str] = Field(min_length=1, max_length=MAX_IMPORT_DOMAINS)
    user_id: str | None = None


class ImportSummary(ContractModel):
    """``skipped`` counts invalid domains and ones already on the list."""

    imported: int
    skipped: int
    invalid_domains: list[str] = Field(default_factory=list)


def _owned_list(store: SignalStore, list_id: str, user_id: str) -> WatchList:
    watch_list = call_store(lambda: store.get_list(list_id))
    if watch_list is None or watch_list.user_id != user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="List not found.")
    return watch_list


@router.get("", response_model=list[WatchList])
async def get_lists(
    user_id: str = Query(default=settings.default_user_id),
    store: SignalStore = Depends(get_signal_store),
) -> list[WatchList]:
    return call_store(lambda: store.get_lists(user_id))


@router.post("", response_model=WatchList, status_code=status.HTTP_201_CREATED)
async def create_list(
    payload: CreateListRequest,
    store: SignalStore = Depends(get_signal_store),
) -> WatchList:
    user_id = payload.user_id or settings.default_user_id
    name = payload.name.strip()
    if not name:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="List name is required.")
    return call_store(lambda: store.create_list(user_id, name, description=payload.description))


@router.post("/import", response_model=ImportSummary)
async def import_domains(
    payload: ImportDomainsRequest,
    store: SignalStore = Depends(get_signal_store),
) -> ImportSummary:
    """Normalize, dedupe and validate domains, then add the valid ones to an owned list."""
    user_id = payload.user_id or settings.default_user_id
    _owned_list(store, payload.list_id, user_id)
    valid, invalid = partition_domains(payload.domains)
    imported = call_store(lambda: store.add_accounts(payload.list_id, valid))
    metrics.increment("watch.domains_imported", imported)
    logger.info(
        "watch.domains_imported",
        extra={"list_id": payload.list_id, "imported": imported, "invalid": len(invalid)},
    )
    return ImportSummary(
        imported=imported,
        skipped=len(valid) + len(invalid) - imported,
        invalid_domains=invalid[:MAX_REPORTED_INVALID],
    )


@router.get("/{list_id}/accounts", response_model=list[ListAccount])
async def list_accounts(
    list_id: str,
    user_id: str = Query(default=settings.default_user_id),
    store: SignalStore = Depends(get_signal_store),
) -> list[ListAccount]:
    _owned_list(store, list_id, user_id)
    return call_store(lambda: store.list_accounts(list_id))
