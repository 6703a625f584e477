"""Per-user signal configuration: read, replace and partially update."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import ValidationError
from pydantic.alias_generators import to_snake

from app.api.deps import ConfigLoader, call_store, get_config_loader, get_signal_store
from app.config import settings
from app.models.base import ContractModel
from app.models.signals import UserConfig
from app.services.storage.repositories import SignalStore

router = APIRouter()
logger = logging.getLogger(__name__)


class ConfigResponse(ContractModel):
    config: UserConfig
    is_default: bool = False


@router.get("", response_model=ConfigResponse)
async def get_config(
    user_id: str = Query(default=settings.default_user_id),
    store: SignalStore = Depends(get_signal_store),
    load_default: ConfigLoader = Depends(get_config_loader),
) -> ConfigResponse:
    stored = call_store(lambda: store.get_user_config(user_id))
    if stored is None:
        return ConfigResponse(config=load_default(), is_default=True)
    return ConfigResponse(config=stored)


@router.put("", response_model=ConfigResponse)
async def replace_config(
    config: UserConfig,
    user_id: str = Query(default=settings.default_user_id),
    store: SignalStore = Depends(get_signal_store),
) -> ConfigResponse:
    saved = call_store(lambda: store.save_user_config(user_id, config))
    logger.info("user_config.saved", extra={"user_id": user_id, "version": saved.version})
    return ConfigResponse(config=saved)


@router.patch("", response_model=ConfigResponse)
async def update_config(
    changes: dict[str, Any] = Body(...),
    user_id: str = Query(default=settings.default_user_id),
    store: SignalStore = Depends(get_signal_store),
    load_default: ConfigLoader = Depends(get_config_loader),
) -> ConfigResponse:
    """Shallow-merge top-level keys into the current config and bump its version."""
    current = call_store(lambda: store.get_user_config(user_id)) or load_default()
    merged = current.model_dump()
    merged.update({to_snake(key): value for key, value in changes.items()})
    merged["version"] = current.version + 1
    try:
        updated = UserConfig.model_validate(merged)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=exc.errors(include_url=False, include_context=False),
        ) from exc
    saved = call_store(lambda: store.save_user_config(user_id, updated))
    logger.info("user_config.updated", extra={"user_id": user_id, "version": saved.version})
    return ConfigResponse(config=saved)
