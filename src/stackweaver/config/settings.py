"""
Application settings using Pydantic.

Provides environment-based configuration loading with STACKWEAVER_ prefix.
Provider credentials are never read from descriptor files; the gcloud
adapter relies on the CLI's own authentication plus the values here.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings."""

    # State
    state_dir: Path = Path(".stackweaver/state")

    # Provider selection (descriptor "provider" key wins when present)
    default_provider: str = "gcloud"

    # Executor
    call_timeout_seconds: float = 120.0
    max_attempts: int = 3
    backoff_multiplier: float = 1.0
    backoff_max_seconds: float = 30.0
    max_workers: int = 1

    # Logging
    log_level: str = "WARNING"
    log_json: bool = True

    # Google Cloud
    gcloud_binary: str = "gcloud"
    gcloud_project: str | None = None
    gcloud_region: str = "us-central1"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "STACKWEAVER_"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
