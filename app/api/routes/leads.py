"""API endpoints for running the signal pipeline and triaging its leads."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import Field

from app.api.deps import (
    ConfigLoader,
    call_store,
    get_config_loader,
    get_signal_pipeline,
    get_signal_store,
    resolve_config,
)
from app.config import settings
from app.models.base import ContractModel
from app.models.lead import LeadRecord, LeadStatus
from app.models.run import PipelineMode, PipelineOptions, PipelineResult, SignalRun
from app.services.storage.repositories import SignalStore
from pipelines.signals.orchestrator import SignalPipeline

router = APIRouter()
logger = logging.getLogger(__name__)


class GenerateLeadsRequest(ContractModel):
    """Request payload for a pipeline run."""

    mode: PipelineMode = PipelineMode.HUNT
    limit: int = Field(default=settings.default_lead_limit, ge=1, le=100)
    list_id: str | None = None
    domains: list[str] = Field(default_factory=list)
    user_id: str | None = Field(default=None, description="Defaults to DEFAULT_USER_ID.")


class LeadStatusUpdate(ContractModel):
    status: LeadStatus


@router.post("/leads/generate", response_model=PipelineResult)
async def generate_leads(
    payload: GenerateLeadsRequest,
    pipeline: SignalPipeline = Depends(get_signal_pipeline),
    store: SignalStore = Depends(get_signal_store),
    load_default: ConfigLoader = Depends(get_config_loader),
) -> PipelineResult:
    """Run the pipeline synchronously and return its structured result.

    Watch runs take their accounts from ``domains``, from the watch list named by
    ``listId``, or from both.
    """
    user_id = payload.user_id or settings.default_user_id
    if payload.mode is PipelineMode.WATCH:
        if not payload.domains and not payload.list_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Watch mode requires domains or a listId.",
            )
        if payload.list_id:
            watch_list = call_store(lambda: store.get_list(payload.list_id))
            if watch_list is None or watch_list.user_id != user_id:
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Watch list not found.")
    config = resolve_config(store, user_id, load_default)
    options = PipelineOptions(
        mode=payload.mode,
        limit=payload.limit,
        list_id=payload.list_id,
        domains=payload.domains,
    )
    return await pipeline.run(config, options, user_id=user_id)


@router.get("/runs/{run_id}", response_model=SignalRun)
async def get_run(run_id: str, store: SignalStore = Depends(get_signal_store)) -> SignalRun:
    run = call_store(lambda: store.get_signal_run(run_id))
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Signal run not found.")
    return run


@router.get("/leads", response_model=list[LeadRecord])
async def list_leads(
    user_id: str = Query(default=settings.default_user_id),
    date: str | None = Query(default=None, description="Run date filter (YYYY-MM-DD)."),
    lead_status: LeadStatus | None = Query(default=None, alias="status"),
    min_score: int | None = Query(default=None, alias="minScore", ge=0, le=100),
    max_score: int | None = Query(default=None, alias="maxScore", ge=0, le=100),
    industry: str | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    store: SignalStore = Depends(get_signal_store),
) -> list[LeadRecord]:
    return call_store(
        lambda: store.list_leads(
            user_id,
            date=date,
            status=lead_status,
            min_score=min_score,
            max_score=max_score,
            industry=industry,
            limit=limit,
            offset=offset,
        )
    )


@router.patch("/leads/{lead_id}", response_model=LeadRecord)
async def update_lead(
    lead_id: str,
    payload: LeadStatusUpdate,
    store: SignalStore = Depends(get_signal_store),
) -> LeadRecord:
    return call_store(lambda: store.update_lead_status(lead_id, payload.status))
