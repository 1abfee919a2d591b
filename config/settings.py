"""
Configuration settings for the BetSignal live sync engine.
Uses pydantic-settings for validation and environment variable loading.
"""

from enum import Enum
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BatchPolicy(str, Enum):
    """How the scheduler picks matches from the eligible set."""
    INTENSITY = "intensity"  # Hottest matches first (dangerous attacks/shots per minute)
    RANDOM = "random"        # Uniform sample, seeded


class GeneratorSettings(BaseSettings):
    """Settings for the external signal provider (Gemini)."""

    api_key: str = Field(default="", description="Gemini API key")
    base_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    signal_model: str = "gemini-3-flash-preview"  # Flash for automatic signals (higher quota)
    ticket_model: str = "gemini-3-pro-preview"
    temperature: float = 0.4

    # Retry policy on rate-limit / quota responses
    max_retries: int = 3
    initial_backoff_seconds: float = 2.0
    backoff_multiplier: float = 2.0

    # Per-attempt network timeout
    request_timeout_seconds: float = 20.0


class SchedulerSettings(BaseSettings):
    """Signal sync scheduling."""

    interval_seconds: float = 45.0
    batch_size: int = 2
    batch_policy: BatchPolicy = BatchPolicy.INTENSITY
    random_seed: Optional[int] = None

    # Matches at or past this minute are no longer eligible
    max_minute: int = 90

    # Resolution sweep cadence
    resolution_interval_seconds: float = 30.0


class FeedSettings(BaseSettings):
    """Live feed sizing."""

    capacity: int = 30


class StorageSettings(BaseSettings):
    """Persistence of history and saved signals."""

    data_dir: str = "data"
    history_key: str = "betsignal_history"
    saved_key: str = "saved_bet_signals"


class TelemetrySettings(BaseSettings):
    """Match telemetry source for the standalone process."""

    # JSON array of match payloads, re-read as full-state replacements
    matches_file: Optional[str] = None
    poll_seconds: float = 15.0


class PreMatchSettings(BaseSettings):
    """Pre-match analysis cache."""

    ttl_seconds: float = 1800.0
    max_entries: int = 256


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore"
    )

    # Debug settings
    debug: bool = False
    log_level: str = "INFO"
    log_json: bool = True

    # Timezone used for "today" and weekly buckets
    timezone: str = Field(default="UTC", description="IANA timezone name, e.g. America/Sao_Paulo")

    # Sub-settings
    generator: GeneratorSettings = Field(default_factory=GeneratorSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    feed: FeedSettings = Field(default_factory=FeedSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    prematch: PreMatchSettings = Field(default_factory=PreMatchSettings)


# Global settings instance
settings = Settings()
