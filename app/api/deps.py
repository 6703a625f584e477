"""Shared FastAPI dependencies: store and pipeline singletons, config, store error mapping."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TypeVar

from fastapi import Depends, HTTPException, status

from app.config import settings
from app.models.signals import UserConfig, UserConfigError, load_user_config
from app.services.storage.errors import RecordNotFoundError, SignalStoreError
from app.services.storage.repositories import SignalStore, build_signal_store
from pipelines.signals.orchestrator import SignalPipeline, build_pipeline

logger = logging.getLogger(__name__)

T = TypeVar("T")

_STORE_INSTANCE: SignalStore | None = None
_PIPELINE_INSTANCE: SignalPipeline | None = None


def get_signal_store() -> SignalStore:
    """Singleton accessor used by API routes."""
    global _STORE_INSTANCE  # noqa: PLW0603
    if _STORE_INSTANCE is None:
        _STORE_INSTANCE = build_signal_store()
    return _STORE_INSTANCE


def get_signal_pipeline(store: SignalStore = Depends(get_signal_store)) -> SignalPipeline:
    global _PIPELINE_INSTANCE  # noqa: PLW0603
    if _PIPELINE_INSTANCE is None:
        _PIPELINE_INSTANCE = build_pipeline(settings, store=store)
    return _PIPELINE_INSTANCE


async def close_signal_pipeline() -> None:
    global _PIPELINE_INSTANCE  # noqa: PLW0603
    if _PIPELINE_INSTANCE is not None:
        await _PIPELINE_INSTANCE.aclose()
        _PIPELINE_INSTANCE = None


def get_default_config() -> UserConfig:
    """Config from SIGNAL_CONFIG_PATH, used when a user has not saved their own."""
    try:
        return load_user_config(settings.signal_config_path)
    except UserConfigError as exc:
        logger.error("api.config_error", extra={"code": exc.code})
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc


def call_store(operation: Callable[[], T]) -> T:
    """Run a store call, mapping missing records to 404 and backend failures to 503."""
    try:
        return operation()
    except RecordNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except SignalStoreError as exc:
        logger.error("api.store_error", extra={"code": exc.code})
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


ConfigLoader = Callable[[], UserConfig]


def get_config_loader() -> ConfigLoader:
    """Loader for the default config; only invoked when the user has no saved config."""
    return get_default_config


def resolve_config(store: SignalStore, user_id: str, load_default: ConfigLoader) -> UserConfig:
    stored = call_store(lambda: store.get_user_config(user_id))
    return stored if stored is not None else load_default()
