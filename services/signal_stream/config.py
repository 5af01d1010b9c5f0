"""
Configuration for Signal Stream Service.
"""
from functools import lru_cache
from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SignalStreamSettings(BaseSettings):
    """Signal Stream service settings."""

    # Service
    service_name: str = "signal_stream"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = Field(
        default=4000,
        ge=1,
        le=65535,
        validation_alias=AliasChoices("SIGNAL_STREAM_PORT", "PORT", "port")
    )
    cors_origins: List[str] = ["*"]

    # Polling
    poll_interval_seconds: int = Field(default=60, ge=1)  # One tick per minute
    max_overlapping_ticks: int = Field(default=2, ge=1, le=10)

    # Market data
    max_concurrent_fetches: int = Field(default=10, ge=1, le=100)
    request_timeout_seconds: int = Field(default=30, ge=1, le=300)

    # Redis mirror of delivered signals
    redis_enabled: bool = False
    redis_host: str = "localhost"
    redis_port: int = Field(default=6379, ge=1, le=65535)
    redis_db: int = Field(default=0, ge=0, le=15)
    redis_password: Optional[str] = None
    redis_channel: str = "stock:signal:update"
    latest_signal_ttl_seconds: int = Field(default=3600, ge=1)

    # Metrics
    enable_metrics: bool = True

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # "json" or "text"
    log_dir: Optional[str] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SIGNAL_STREAM_",
        extra="ignore",
        populate_by_name=True
    )


@lru_cache()
def get_settings() -> SignalStreamSettings:
    """
    Get cached settings instance.

    Returns:
        SignalStreamSettings instance
    """
    return SignalStreamSettings()
