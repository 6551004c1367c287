"""Application settings via pydantic-settings (reads from .env).

All environment variables are documented here. The .env file in the
working directory is loaded automatically.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Managed backend (database REST + serverless functions)
    # Functions live under /functions/v1, tables and RPCs under /rest/v1
    backend_url: str = "http://localhost:54321"
    backend_anon_key: str = ""
    http_timeout_sec: float = 15.0

    # Redis: advisor trigger history and the risk delta capture queue
    redis_url: str = "redis://localhost:6379"

    # Transient-error retry (network/timeout/5xx only)
    retry_max_retries: int = 2
    retry_delay_ms: int = 1000

    # Prediction refresh polling after task completion (~10s total)
    prediction_poll_interval_ms: int = 500
    prediction_poll_max_attempts: int = 20

    # Risk delta sanity bounds
    delta_max_score_change: float = 30.0
    delta_min_score_change: float = -20.0
    delta_max_months_added: float = 60.0
    delta_min_months_added: float = -24.0
    delta_max_failure_reduction: float = 0.5

    # Advisor cadence
    advisor_trigger_cooldown_sec: int = 24 * 60 * 60
    advisor_max_auto_opens_per_session: int = 2
    advisor_max_sessions: int = 1000
    advisor_session_idle_ttl_sec: int = 4 * 60 * 60

    # FastAPI server
    api_port: int = 8506

    # Application metadata
    app_name: str = "habitta-advisor"
    app_version: str = "0.1.0"
    debug: bool = False


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
