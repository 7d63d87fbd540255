from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # API Keys
    anthropic_api_key: str = ""

    # Models
    segmentation_model: str = "claude-sonnet-4-20250514"
    analysis_model: str = "claude-opus-4-20250514"
    thinking_model: str = "claude-opus-4-20250514"  # only model that gets a thinking budget
    thinking_budget_tokens: int = 32768
    max_output_tokens: int = 16000
    thinking_max_tokens: int = 32000  # output ceiling of the thinking model, budget included

    # Scheduler
    max_concurrency: int = 5
    cooldown_seconds: int = 60
    approval_seconds: int = 60
    tick_interval: float = 0.5

    # Slicing
    slice_size: int = 50
    slice_context: int = 3

    # External calls
    request_timeout_seconds: float = 120.0
    max_retries: int = 3
    retry_base_delay: float = 1.0

    # App config
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Gracefully handles missing .env files (e.g. in CI/testing) by falling
    back to environment variables and defaults.
    """
    try:
        return Settings()
    except Exception:
        # If .env is missing or unreadable, build settings from env vars only.
        return Settings(_env_file=None)  # type: ignore[call-arg]


settings = get_settings()
