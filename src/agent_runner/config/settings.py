"""Application settings."""

from functools import lru_cache
import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parents[3]


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables."""

    app_name: str = "agent-runner"
    app_env: str = "dev"
    app_debug: bool = False
    max_correction_attempts: int = Field(default=3, ge=1)
    executor_timeout_s: float = Field(default=30.0, gt=0.0)
    judge_timeout_s: float = Field(default=30.0, gt=0.0)
    retry_delay_s: float = Field(default=2.0, ge=0.0)
    semantic_match_confidence: float = Field(default=0.7, ge=0.0, le=1.0)
    run_lease_ttl_s: float = Field(default=120.0, gt=0.0)
    max_parallel_runs: int = Field(default=8, ge=1)
    max_events_per_session: int = Field(default=1000, ge=1)
    event_retention_s: float = Field(default=60.0, ge=0.0)
    event_session_ttl_s: float = Field(default=3600.0, gt=0.0)
    database_url: str = ""
    executor_url: str = ""
    judge_mode: str = "deterministic"
    correction_mode: str = "deterministic"
    llm_provider: str = "openai"
    llm_model: str = "gpt-4o-mini"
    llm_base_url: str = "https://api.openai.com/v1"
    llm_timeout_s: float = Field(default=8.0, ge=0.5)
    llm_max_retries: int = Field(default=1, ge=0)
    llm_backoff_s: float = Field(default=0.2, ge=0.0)
    openai_api_key: str = ""

    model_config = SettingsConfigDict(
        env_prefix="AGENT_RUNNER_",
        extra="ignore",
        env_file=(PROJECT_ROOT / ".env", PROJECT_ROOT / ".env.local"),
        env_file_encoding="utf-8",
    )

    def resolved_database_url(self) -> str:
        return self.database_url or os.getenv("RUNNER_DATABASE_URL", "")

    def resolved_openai_api_key(self) -> str:
        return self.openai_api_key or os.getenv("OPENAI_API_KEY", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
