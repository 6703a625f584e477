"""Do-not-contact list: domains that never become candidates for a user."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import Field

from app.api.deps import call_store, get_signal_store
from app.config import settings
from app.models.base import ContractModel
from app.models.lists import DoNotContactEntry
from app.services.storage.repositories import SignalStore
from pipelines.signals.domains import partition_domains

router = APIRouter()
logger = logging.getLogger(__name__)


class AddDoNotContactRequest(ContractModel):
    domain: str = Field(min_length=1)
    reason: str | None = Field(default=None, max_length=512)
    user_id: str | None = None


@router.get("", response_model=list[DoNotContactEntry])
async def list_dnc(
    user_id: str = Query(default=settings.default_user_id),
    store: SignalStore = Depends(get_signal_store),
) -> list[DoNotContactEntry]:
    return call_store(lambda: store.list_dnc(user_id))


@router.post("", response_model=DoNotContactEntry, status_code=status.HTTP_201_CREATED)
async def add_dnc(
    payload: AddDoNotContactRequest,
    store: SignalStore = Depends(get_signal_store),
) -> DoNotContactEntry:
    """Add or update an entry; URLs and ``www.`` hosts are reduced to the bare domain."""
    user_id = payload.user_id or settings.default_user_id
    valid, _ = partition_domains([payload.domain])
    if not valid:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid domain.")
    domain = valid[0]
    call_store(lambda: store.add_dnc(user_id, domain, reason=payload.reason))
    logger.info("dnc.added", extra={"user_id": user_id, "domain": domain})
    return DoNotContactEntry(user_id=user_id, domain=domain, reason=payload.reason)
