from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="CONCORD_", env_file=".env", extra="ignore")

    app_name: str = "concord"
    env: str = "dev"

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # Event Bus
    event_debounce_delay: float = Field(default=0.3, ge=0)
    event_max_active_topics: int = Field(default=10, ge=1)
    event_diagnostics_limit: int = Field(default=100, ge=1)

    # Request deduplication (seconds)
    dedup_timeout: float = Field(default=30.0, gt=0)
    dedup_retryable: bool = False
    dedup_max_retries: int = Field(default=3, ge=0)
    dedup_retry_delay: float = Field(default=1.0, ge=0)
    dedup_sweep_interval: float = Field(default=30.0, gt=0)
    dedup_stale_after: float = Field(default=60.0, gt=0)

    # Record cache
    cache_capacity: int = Field(default=50, ge=1)
    cache_ttl: float = Field(default=300.0, gt=0)
    cache_sweep_interval: float = Field(default=300.0, gt=0)

    # Content moderation
    moderation_reject_severity: int = Field(default=3, ge=1)
    moderation_max_urls: int = Field(default=2, ge=0)
    moderation_duplicate_window: float = Field(default=1800.0, gt=0)
    moderation_history_limit: int = Field(default=500, ge=1)
    moderation_term_cache_ttl: float = Field(default=300.0, gt=0)
    moderation_language: str = "ja"
    moderation_retry_attempts: int = Field(default=2, ge=0)
    moderation_retry_base_delay: float = Field(default=1.0, ge=0)

    # Remote data provider
    remote_base_url: str = Field(default="http://localhost:54321", validation_alias="REMOTE_URL")
    remote_api_key: str | None = Field(default=None, validation_alias="REMOTE_API_KEY")
    remote_timeout: float = Field(default=10.0, gt=0)

    # Persistent key-value store
    kv_backend: str = "memory"
    redis_url: str = Field(default="redis://localhost:6379/0", validation_alias="REDIS_URL")
    kv_key_prefix: str = "concord:kv:"

    # Observability
    enable_metrics: bool = True
