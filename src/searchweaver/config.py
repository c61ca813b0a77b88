"""Application configuration.

Configuration is loaded from environment variables. For local development, you can provide a
`.env` file and set `SEARCHWEAVER_ENV_FILE` to point to it.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

ProviderName = Literal["tavily", "exa", "semantic-scholar", "crossref", "clinicaltrials", "firecrawl", "duckduckgo"]


class Settings(BaseSettings):
    """SearchWeaver settings.

    All fields are environment-configurable. Prefix is `SEARCHWEAVER_`.
    """

    model_config = SettingsConfigDict(
        env_prefix="SEARCHWEAVER_",
        env_file=None,
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    app_env: Literal["dev", "prod"] = Field(default="dev")
    log_level: str = Field(default="INFO")

    # LLM
    openai_api_key: str | None = Field(default=None)
    openai_base_url: str | None = Field(default=None)
    openai_model: str = Field(default="gpt-4o-mini")
    openai_synthesis_model: str = Field(default="gpt-4o")
    openai_timeout_s: float = Field(default=120.0)

    llm_max_retries: int = Field(default=3, ge=0, le=10)
    llm_retry_base_delay_s: float = Field(default=1.0, ge=0.0, le=60.0)
    llm_retry_max_delay_s: float = Field(default=30.0, ge=0.0, le=300.0)
    retry_jitter: float = Field(default=0.2, ge=0.0, le=1.0)

    circuit_failure_threshold: int = Field(default=5, ge=1, le=100)
    circuit_reset_timeout_s: float = Field(default=60.0, ge=0.0, le=3600.0)
    circuit_success_threshold: int = Field(default=2, ge=1, le=100)

    # Search providers
    search_fallback_order: list[ProviderName] = Field(
        default_factory=lambda: ["tavily", "firecrawl", "exa", "duckduckgo"]
    )

    tavily_api_key: str | None = Field(default=None)
    tavily_api_base_url: str = Field(default="https://api.tavily.com")
    tavily_search_depth: Literal["basic", "advanced"] = Field(default="advanced")
    tavily_timeout_s: float = Field(default=30.0, ge=1.0, le=300.0)
    tavily_max_retries: int = Field(default=3, ge=0, le=10)
    tavily_retry_backoff_s: float = Field(default=0.75, ge=0.0, le=30.0)
    tavily_retry_max_backoff_s: float = Field(default=8.0, ge=0.0, le=120.0)

    exa_api_key: str | None = Field(default=None)
    exa_api_base_url: str = Field(default="https://api.exa.ai")

    semantic_scholar_enabled: bool = Field(default=True)
    semantic_scholar_api_key: str | None = Field(default=None)
    semantic_scholar_api_base_url: str = Field(default="https://api.semanticscholar.org/graph/v1")

    crossref_enabled: bool = Field(default=True)
    crossref_api_base_url: str = Field(default="https://api.crossref.org")
    # Contact address sent with Crossref requests for the polite pool
    crossref_mailto: str | None = Field(default=None)

    clinicaltrials_enabled: bool = Field(default=True)
    clinicaltrials_api_base_url: str = Field(default="https://clinicaltrials.gov/api/v2")

    firecrawl_api_key: str | None = Field(default=None)
    firecrawl_api_base_url: str = Field(default="https://api.firecrawl.dev")

    duckduckgo_enabled: bool = Field(default=True)

    # Scraping
    scraper_backend: Literal["auto", "firecrawl", "local"] = Field(default="auto")
    scrape_timeout_s: float = Field(default=15.0, ge=1.0, le=120.0)

    # Search loop
    max_search_queries: int = Field(default=4, ge=1, le=20)
    max_sources_per_search: int = Field(default=6, ge=1, le=50)
    max_sources_to_scrape: int = Field(default=6, ge=0, le=50)
    min_content_length: int = Field(default=100, ge=0)
    summary_char_limit: int = Field(default=100, ge=20, le=2000)
    context_preview_length: int = Field(default=500, ge=0)
    answer_check_preview: int = Field(default=2500, ge=100)
    max_sources_to_check: int = Field(default=10, ge=1, le=100)
    max_retries: int = Field(default=2, ge=0, le=10)
    max_search_attempts: int = Field(default=3, ge=1, le=10)
    min_answer_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    # Sub-questions at or above this confidence count as partially answered
    partial_answer_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    # Stop looping once partial answers exist and this many attempts have elapsed
    partial_answer_stop_attempts: int = Field(default=2, ge=1, le=10)
    max_url_scrapes: int = Field(default=3, ge=0, le=10)
    top_sources_to_rescrape: int = Field(default=3, ge=0, le=20)
    graph_step_limit: int = Field(default=35, ge=5, le=500)

    # Context budget
    context_max_total_chars: int = Field(default=100_000, ge=1000)
    context_min_chars_per_source: int = Field(default=2000, ge=0)
    context_max_chars_per_source: int = Field(default=15_000, ge=100)
    context_window_chars: int = Field(default=500, ge=10)
    # Condense each source with the model instead of cutting keyword windows
    context_summarize: bool = Field(default=False)

    # Recording
    record_events: bool = Field(default=True)
    redis_enabled: bool = Field(default=False)
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_key_prefix: str = Field(default="searchweaver")

    # Networking
    http_timeout_s: float = Field(default=30.0)
    http_user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
            "AppleWebKit/537.36 (KHTML, like Gecko) "
            "Chrome/120.0.0.0 Safari/537.36"
        )
    )

    # Consumer
    idle_timeout_s: float = Field(default=5.0, ge=0.1, le=600.0)

    # Artifacts
    artifacts_dir: Path = Field(default=Path("artifacts"))


def load_settings() -> Settings:
    """Load settings from env.

    Returns:
        Settings: Parsed settings.
    """

    env_file_override = os.getenv("SEARCHWEAVER_ENV_FILE")
    if env_file_override:
        env_path = Path(env_file_override)
        return Settings(_env_file=env_path)

    default_env = Path.cwd() / ".env"
    if default_env.exists():
        return Settings(_env_file=default_env)

    return Settings()
