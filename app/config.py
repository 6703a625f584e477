from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Signal Leads"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5
    db_auto_create_schema: bool = True

    # Runtime
    signal_pipeline_mode: str = "fixture"
    signal_fixture_dir: str = "fixtures/sample"
    signal_config_path: str = "configs/signals/default.yaml"
    default_user_id: str = "local-user"
    default_lead_limit: int = 50

    # Providers
    search_provider: str = "tavily"
    tavily_api_key: str | None = None
    exa_api_key: str | None = None
    search_timeout_seconds: float = 15.0
    openai_api_key: str | None = None
    llm_model: str = "gpt-4o"
    llm_timeout_seconds: float = 60.0
    llm_retry_delay_seconds: float = 1.0

    # Retrieval
    search_concurrency: int = 3
    search_batch_delay_seconds: float = 0.2
    search_results_per_query: int = 10

    # Candidate extraction
    extraction_chunk_size: int = 20
    candidate_min_confidence: float = 0.6

    # Evidence
    evidence_concurrency: int = 5
    evidence_batch_delay_seconds: float = 0.1
    evidence_fetch_timeout_seconds: float = 10.0
    evidence_max_content_length: int = 50_000
    evidence_max_urls_per_domain: int = 5
    evidence_fetch_retries: int = 2
    evidence_retry_base_delay: float = 0.5
    evidence_fetch_pages: bool = True

    # Domain history
    domain_seen_window_days: int = 30

    # Metrics
    metrics_backend: str = "stdout"
    metrics_namespace: str = "signal_pipeline"
    metrics_disable: bool = False
    metrics_sample_rate: float = 1.0
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125

    # Security
    cors_origins: list[str] = []

    # Server
    host: str = "0.0.0.0"
    port: int = 8000

    model_config = ConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
