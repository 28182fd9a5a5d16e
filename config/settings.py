"""Configuration management using pydantic-settings."""
from pathlib import Path
from typing import List, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Upstream credentials
    odds_api_key: Optional[str] = None
    roster_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("ROSTER_API_KEY", "SPORTSDATAIO_KEY"),
    )

    # Optional secondary odds source (e.g. a backup proxy of The Odds API)
    odds_backup_url: Optional[str] = None

    # Cache settings
    cache_backend: str = "memory"  # memory | file | sql
    cache_directory: Path = Path("./.cache")
    cache_database_url: str = "sqlite:///./.cache/aggregator.db"

    # TTLs per resource kind
    roster_ttl_hours: float = 12
    odds_ttl_minutes: float = 180
    props_ttl_hours: float = 6
    purge_max_age_hours: float = 48

    # Provider policy
    provider_timeout_seconds: float = 10.0
    provider_max_attempts: int = 2
    provider_backoff_seconds: float = 0.5
    coalesce_timeout_seconds: float = 60.0

    # Sports covered by refreshAll and the maintenance loop
    refresh_sports: List[str] = ["nfl", "nba", "nhl", "ncaab"]

    # Background maintenance
    maintenance_enabled: bool = False
    maintenance_interval_minutes: float = 30
    maintenance_prewarm: bool = False

    log_level: str = "INFO"


settings = Settings()
