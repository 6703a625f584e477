import json
from pathlib import Path

import pytest

from app.clients.errors import LLMProviderError, LLMValidationError
from app.clients.exa import ExaSearchClient
from app.clients.tavily import TavilySearchClient
from app.config import Settings
from app.models.evidence import QueryPlan
from pipelines.providers import (
    FixtureNotFoundError,
    FixtureSearchClient,
    FixtureStructuredClient,
    LocalFixtureStore,
    ModeError,
    RuntimeMode,
    get_runtime_config,
    get_search_provider,
    get_structured_llm,
)


def _write(base: Path, relative: str, payload) -> None:
    target = base / relative
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(payload), encoding="utf-8")


def _result(url: str) -> dict:
    return {"url": url, "title": "Title", "snippet": "Snippet"}


def test_runtime_config_defaults_to_fixture_mode(tmp_path):
    config = get_runtime_config(Settings(signal_pipeline_mode="", signal_fixture_dir=str(tmp_path)))
    assert config.mode is RuntimeMode.FIXTURE
    assert config.fixture_base == tmp_path


def test_runtime_config_online_mode_normalizes_provider():
    config = get_runtime_config(Settings(signal_pipeline_mode=" ONLINE ", search_provider="Exa"))
    assert config.mode is RuntimeMode.ONLINE
    assert config.search_provider == "exa"
    assert config.fixture_base is None


def test_runtime_config_rejects_unknown_mode():
    with pytest.raises(ModeError) as excinfo:
        get_runtime_config(Settings(signal_pipeline_mode="replay"))
    assert excinfo.value.code == "E_MODE_UNSUPPORTED"


def test_online_providers_are_selected_by_name():
    tavily_settings = Settings(signal_pipeline_mode="online", search_provider="tavily", tavily_api_key="tv-key")
    exa_settings = Settings(signal_pipeline_mode="online", search_provider="exa", exa_api_key="exa-key")

    assert isinstance(get_search_provider(get_runtime_config(tavily_settings), tavily_settings), TavilySearchClient)
    assert isinstance(get_search_provider(get_runtime_config(exa_settings), exa_settings), ExaSearchClient)


def test_unknown_search_provider_rejected():
    app_settings = Settings(signal_pipeline_mode="online", search_provider="bing")
    with pytest.raises(ModeError):
        get_search_provider(get_runtime_config(app_settings), app_settings)


def test_online_llm_requires_api_key():
    app_settings = Settings(signal_pipeline_mode="online", openai_api_key=None)
    with pytest.raises(ValueError):
        get_structured_llm(get_runtime_config(app_settings), app_settings)


@pytest.mark.asyncio
async def test_fixture_search_list_payload_applies_exclusions_and_limit(tmp_path):
    _write(
        tmp_path,
        "search/results.json",
        [
            _result("https://news.techcrunch.com/acme"),
            _result("https://acme.io/press"),
            _result("https://globex.com/news"),
            _result("https://initech.com/blog"),
        ],
    )
    client = FixtureSearchClient(LocalFixtureStore(tmp_path))

    response = await client.search("anything", max_results=2, exclude_domains=["techcrunch.com"])

    assert response.query == "anything"
    assert [result.url for result in response.results] == ["https://acme.io/press", "https://globex.com/news"]
    assert {result.source for result in response.results} == {"fixture"}


@pytest.mark.asyncio
async def test_fixture_search_mapping_falls_back_to_default(tmp_path):
    _write(
        tmp_path,
        "search/results.json",
        {"series b fintech": [_result("https://fintechco.com/press")], "default": [_result("https://acme.io/")]},
    )
    client = FixtureSearchClient(LocalFixtureStore(tmp_path))

    matched = await client.search("series b fintech", max_results=5)
    fallback = await client.search("unrelated", max_results=5)

    assert [r.url for r in matched.results] == ["https://fintechco.com/press"]
    assert [r.url for r in fallback.results] == ["https://acme.io/"]


@pytest.mark.asyncio
async def test_fixture_search_missing_artifact(tmp_path):
    client = FixtureSearchClient(LocalFixtureStore(tmp_path))
    with pytest.raises(FixtureNotFoundError) as excinfo:
        await client.search("q", max_results=1)
    assert excinfo.value.code == "E_FIXTURE_NOT_FOUND"


@pytest.mark.asyncio
async def test_fixture_llm_selects_response_by_prompt_key(tmp_path):
    _write(
        tmp_path,
        "llm/QueryPlan.json",
        {
            "responses": {"acme.io": {"queries": [{"query": "acme funding"}]}},
            "default": {"queries": [{"query": "generic"}]},
        },
    )
    client = FixtureStructuredClient(LocalFixtureStore(tmp_path))

    keyed = await client.complete_structured(
        [{"role": "system", "content": "ignored acme.io"}, {"role": "user", "content": "Evaluate acme.io"}],
        schema=QueryPlan,
        schema_name="QueryPlan",
    )
    default = await client.complete_structured(
        [{"role": "user", "content": "Evaluate globex.com"}], schema=QueryPlan, schema_name="QueryPlan"
    )

    assert keyed.queries[0].query == "acme funding"
    assert default.queries[0].query == "generic"


@pytest.mark.asyncio
async def test_fixture_llm_plain_payload(tmp_path):
    _write(tmp_path, "llm/QueryPlan.json", {"queries": [{"query": "only one", "targetSignals": ["funding"]}]})
    client = FixtureStructuredClient(LocalFixtureStore(tmp_path))

    plan = await client.complete_structured([], schema=QueryPlan, schema_name="QueryPlan")

    assert plan.queries[0].target_signals == ["funding"]


@pytest.mark.asyncio
async def test_fixture_llm_missing_file_is_provider_error(tmp_path):
    client = FixtureStructuredClient(LocalFixtureStore(tmp_path))
    with pytest.raises(LLMProviderError) as excinfo:
        await client.complete_structured([], schema=QueryPlan, schema_name="QueryPlan")
    assert excinfo.value.code == "E_FIXTURE_NOT_FOUND"


@pytest.mark.asyncio
async def test_fixture_llm_unmatched_key_without_default(tmp_path):
    _write(tmp_path, "llm/QueryPlan.json", {"responses": {"acme.io": {"queries": [{"query": "q"}]}}})
    client = FixtureStructuredClient(LocalFixtureStore(tmp_path))
    with pytest.raises(LLMProviderError):
        await client.complete_structured(
            [{"role": "user", "content": "globex.com"}], schema=QueryPlan, schema_name="QueryPlan"
        )


@pytest.mark.asyncio
async def test_fixture_llm_invalid_payload_is_validation_error(tmp_path):
    _write(tmp_path, "llm/QueryPlan.json", {"queries": []})
    client = FixtureStructuredClient(LocalFixtureStore(tmp_path))
    with pytest.raises(LLMValidationError) as excinfo:
        await client.complete_structured([], schema=QueryPlan, schema_name="QueryPlan")
    assert excinfo.value.code == "LLM_SCHEMA_ERR"
