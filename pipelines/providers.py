"""Runtime provider selection for online vs. fixture modes."""

from __future__ import annotations

import json
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from functools import cached_property
from pathlib import Path
from typing import Any, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from app.clients.errors import LLMProviderError, LLMValidationError
from app.clients.exa import ExaSearchClient
from app.clients.openai_structured import OpenAIStructuredClient
from app.clients.tavily import TavilySearchClient
from app.config import Settings
from app.models.evidence import SearchResponse, SearchResult
from pipelines.signals.domains import domain_matches_suffix, host_of

logger = logging.getLogger("pipelines.providers")

ModelT = TypeVar("ModelT", bound=BaseModel)
Message = dict[str, str]


class RuntimeMode(str, Enum):
    """Available runtime behaviors."""

    ONLINE = "online"
    FIXTURE = "fixture"


class ModeError(RuntimeError):
    """Raised when runtime mode/provider configuration is invalid."""

    def __init__(self, message: str, code: str = "E_MODE_UNSUPPORTED") -> None:
        super().__init__(message)
        self.code = code


class FixtureNotFoundError(ModeError):
    """Raised when a requested fixture artifact cannot be located."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Fixture not found: {path}", code="E_FIXTURE_NOT_FOUND")
        self.path = path


@dataclass(frozen=True)
class RuntimeConfig:
    """Resolved runtime configuration."""

    mode: RuntimeMode
    search_provider: str
    fixture_base: Path | None = None


class SearchProvider(Protocol):
    """Search behavior consumed by the retriever."""

    async def search(
        self,
        query: str,
        *,
        max_results: int,
        exclude_domains: Sequence[str] = (),
    ) -> SearchResponse:
        ...


class StructuredLLM(Protocol):
    """Structured-output language model consumed by every LLM stage."""

    async def complete_structured(
        self,
        messages: Sequence[Message],
        *,
        schema: type[ModelT],
        schema_name: str,
        max_retries: int = 3,
        temperature: float | None = None,
    ) -> ModelT:
        ...


def _parse_mode(value: str | None) -> RuntimeMode:
    if not value:
        return RuntimeMode.FIXTURE
    normalized = value.strip().lower()
    for mode in RuntimeMode:
        if normalized == mode.value:
            return mode
    raise ModeError(f"Unsupported SIGNAL_PIPELINE_MODE value: {value}")


def get_runtime_config(settings: Settings) -> RuntimeConfig:
    """Resolve runtime configuration from settings."""
    mode = _parse_mode(settings.signal_pipeline_mode)
    fixture_base = Path(settings.signal_fixture_dir).expanduser() if mode is RuntimeMode.FIXTURE else None
    config = RuntimeConfig(
        mode=mode,
        search_provider=(settings.search_provider or "tavily").strip().lower(),
        fixture_base=fixture_base,
    )
    logger.info(
        "Signal pipeline runtime mode=%s search_provider=%s",
        config.mode.value,
        config.search_provider,
    )
    return config


def get_search_provider(config: RuntimeConfig, settings: Settings) -> SearchProvider:
    """Return the search provider implementation for the runtime mode."""
    if config.mode is RuntimeMode.FIXTURE:
        return FixtureSearchClient(_build_fixture_store(config))
    if config.search_provider == "tavily":
        return TavilySearchClient(
            settings.tavily_api_key or "", timeout=settings.search_timeout_seconds
        )
    if config.search_provider == "exa":
        return ExaSearchClient(settings.exa_api_key or "", timeout=settings.search_timeout_seconds)
    raise ModeError(f"Unsupported SEARCH_PROVIDER value: {config.search_provider}")


def get_structured_llm(config: RuntimeConfig, settings: Settings) -> StructuredLLM:
    """Return the structured LLM implementation for the runtime mode."""
    if config.mode is RuntimeMode.FIXTURE:
        return FixtureStructuredClient(_build_fixture_store(config))
    return OpenAIStructuredClient(
        settings.openai_api_key or "",
        model=settings.llm_model,
        timeout=settings.llm_timeout_seconds,
        retry_delay_seconds=settings.llm_retry_delay_seconds,
    )


def _build_fixture_store(config: RuntimeConfig) -> LocalFixtureStore:
    if not config.fixture_base:
        raise ModeError("Fixture base path is required for fixture mode.")
    return LocalFixtureStore(config.fixture_base)


class LocalFixtureStore:
    """Loads fixtures from the repository tree."""

    def __init__(self, base_dir: Path) -> None:
        self._base_dir = base_dir

    def exists(self, relative_path: str) -> bool:
        return (self._base_dir / relative_path).exists()

    def load_json(self, relative_path: str) -> Any:
        target = (self._base_dir / relative_path).resolve()
        if not target.exists():
            raise FixtureNotFoundError(str(target))
        with target.open("r", encoding="utf-8") as infile:
            return json.load(infile)


class FixtureSearchClient:
    """Fixture-backed search provider.

    ``search/results.json`` is either a list of results returned for every query, or a mapping
    of query text to result lists with an optional ``"default"`` entry.
    """

    def __init__(self, store: LocalFixtureStore, artifact: str = "search/results.json") -> None:
        self._store = store
        self._artifact = artifact

    @cached_property
    def _payload(self) -> dict[str, list[dict[str, Any]]]:
        payload = self._store.load_json(self._artifact)
        if isinstance(payload, list):
            return {"default": payload}
        if isinstance(payload, dict):
            return payload
        raise FixtureNotFoundError(self._artifact)

    async def search(
        self,
        query: str,
        *,
        max_results: int,
        exclude_domains: Sequence[str] = (),
    ) -> SearchResponse:
        entries = self._payload.get(query, self._payload.get("default", []))
        results: list[SearchResult] = []
        for entry in entries:
            result = SearchResult.model_validate({"source": "fixture", **entry})
            host = host_of(result.url)
            if host and any(domain_matches_suffix(host, excluded) for excluded in exclude_domains):
                continue
            results.append(result)
            if len(results) >= max_results:
                break
        return SearchResponse(query=query, results=results)


class FixtureStructuredClient:
    """Fixture-backed structured LLM.

    Responses live in ``llm/<SchemaName>.json``. A file is either one payload, or a mapping
    ``{"responses": {key: payload}, "default": payload}`` where the first key found in the
    user prompt selects the payload (e.g. a candidate domain).
    """

    def __init__(self, store: LocalFixtureStore, directory: str = "llm") -> None:
        self._store = store
        self._directory = directory

    async def complete_structured(
        self,
        messages: Sequence[Message],
        *,
        schema: type[ModelT],
        schema_name: str,
        max_retries: int = 3,  # noqa: ARG002 - signature parity
        temperature: float | None = None,  # noqa: ARG002 - signature parity
    ) -> ModelT:
        artifact = f"{self._directory}/{schema_name}.json"
        if not self._store.exists(artifact):
            raise LLMProviderError(f"No fixture response for {schema_name}", code="E_FIXTURE_NOT_FOUND")
        payload = _select_fixture_payload(self._store.load_json(artifact), messages)
        if payload is None:
            raise LLMProviderError(f"No fixture response matched for {schema_name}", code="E_FIXTURE_NOT_FOUND")
        try:
            return schema.model_validate(payload)
        except ValidationError as exc:
            raise LLMValidationError(f"{schema_name} fixture failed validation: {exc}") from exc


def _select_fixture_payload(payload: Any, messages: Sequence[Message]) -> Any:
    if not isinstance(payload, dict) or "responses" not in payload:
        return payload
    prompt = "\n".join(message.get("content", "") for message in messages if message.get("role") == "user")
    for key, candidate in payload["responses"].items():
        if key in prompt:
            return candidate
    return payload.get("default")
