from functools import lru_cache
from typing import ClassVar

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables / .env file."""

    # Durable key-value medium for telemetry history (empty = in-process only)
    store_db_path: str = ""

    # Incident simulator (stands in for a real monitoring worker)
    simulator_enabled: bool = True
    simulator_initial_delay_min: float = 8.0
    simulator_initial_delay_max: float = 15.0
    simulator_interval_min: float = 30.0
    simulator_interval_max: float = 60.0
    simulator_auto_resolve_after_seconds: float = 90.0
    simulator_auto_resolve_probability: float = 0.3

    # Single-user role model (viewer | host | ops)
    current_user_id: str = "u1"
    current_user_name: str = "You"
    current_user_role: str = "ops"

    # Upstream chat-completions gateway used by the analysis relay
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_base_url: str = "https://api.openai.com/v1"

    # Where clients post analysis requests (the relay endpoint of this service)
    analysis_url: str = "http://localhost:8000/analysis/chat"
    analysis_timeout_seconds: float = 120.0

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Lazily load and cache settings. Fails at first call, not at import time."""
    return Settings()
