"""Application configuration."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from evidence_scout.constants import (
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_LLM_MODEL,
    DEFAULT_LLM_TIMEOUT,
    DEFAULT_MAX_RETRIES,
    DEFAULT_PORT,
    DEFAULT_TIMEOUT,
    ICITE_BASE_URL,
    NCBI_BASE_URL,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # API Keys
    anthropic_api_key: str = ""
    ncbi_api_key: str = ""

    # LLM Settings
    anthropic_base_url: str | None = None
    llm_model: str = DEFAULT_LLM_MODEL
    llm_max_tokens: int = 4000
    llm_temperature: float = 0.2
    llm_timeout: float = DEFAULT_LLM_TIMEOUT
    analysis_batch_url: str | None = None

    # Literature sources
    pubmed_base_url: str = NCBI_BASE_URL
    pubmed_timeout: float = DEFAULT_TIMEOUT
    pubmed_max_retries: int = DEFAULT_MAX_RETRIES
    icite_base_url: str = ICITE_BASE_URL
    icite_enabled: bool = True

    # Executor
    executor_max_concurrent: int = 2
    executor_base_delay: float = 1.0
    executor_max_delay: float = 60.0
    executor_backoff_factor: float = 2.0
    executor_recovery_time: float = 90.0
    executor_debug: bool = False

    # Progress channel
    heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL

    # App Settings
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    cors_origins: list[str] = ["*"]
    debug: bool = False
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
