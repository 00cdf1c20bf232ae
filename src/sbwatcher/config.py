"""sbwatcher configuration with sensible defaults for development."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    sbwatcher configuration.

    All settings can be overridden via environment variables with SBWATCHER_ prefix.
    Defaults match the timings of the watcher loop - no configuration needed to get started.
    """

    model_config = SettingsConfigDict(
        env_prefix="SBWATCHER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # Redis URL for the bundled Redis transport
    redis_url: str = "redis://localhost:6379"
    key_prefix: str = "sbwatcher"

    # Concurrency ceiling (max in-flight messages per watcher)
    concurrency: int = 1

    # Worker loop / monitor timings
    receive_retry_delay_ms: float = 500.0
    monitor_interval_ms: float = 10_000.0
    spinup_stagger_ms: float = 25.0

    # Bounded retry for lookup/unlock/delete transport errors
    retry_attempts: int = 3
    retry_base_delay_ms: float = 1_000.0
    retry_max_delay_ms: float = 4_000.0

    # Peek-lock duration used when creating queues
    lock_duration_ms: int = 30_000

    # Graceful shutdown budget
    stop_timeout_seconds: float = 30.0


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
