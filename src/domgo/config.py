"""Configuration system for domgo.

Uses pydantic-settings to load configuration from environment variables
and .env files with defaults matching the mobile client's behaviour.
"""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.
    Environment variables are prefixed with DOMGO_ (e.g., DOMGO_PAGE_SIZE).
    Durations are in seconds.
    """

    model_config = SettingsConfigDict(
        env_prefix="DOMGO_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Catalog service
    catalog_url: str = Field(
        default="http://localhost:8000/api",
        description="Base URL of the remote listing catalog",
    )
    catalog_timeout: float = Field(
        default=15.0,
        gt=0,
        description="Per-request timeout for catalog calls",
    )
    catalog_max_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts per catalog request before giving up",
    )
    catalog_retry_delay: float = Field(
        default=1.0,
        ge=0,
        description="Delay before the first retry",
    )
    catalog_backoff_factor: float = Field(
        default=1.5,
        ge=1.0,
        description="Multiplier applied to the retry delay after each attempt",
    )

    # Pagination
    page_size: int = Field(
        default=10,
        ge=1,
        description="Listings per page",
    )
    first_page_min_interval: float = Field(
        default=300.0,
        ge=0,
        description="Minimum seconds between first-page refetches of a category",
    )
    detail_min_interval: float = Field(
        default=900.0,
        ge=0,
        description="Minimum seconds between refetches of a single listing",
    )
    load_more_debounce: float = Field(
        default=0.3,
        ge=0,
        description="Trailing-edge debounce window for load-more triggers",
    )
    load_more_throttle: float = Field(
        default=0.8,
        ge=0,
        description="Minimum interval between executed load-more calls",
    )

    # In-memory cache
    cache_max_entries: int = Field(
        default=50,
        ge=1,
        description="Maximum entries in the listing page cache",
    )
    cache_ttl: float = Field(
        default=300.0,
        gt=0,
        description="Time-to-live of cached pages",
    )
    cache_cleanup_interval: float = Field(
        default=120.0,
        gt=0,
        description="Interval of the background expiry sweep",
    )

    # Persistence
    storage_path: Path = Field(
        default=Path.home() / ".domgo" / "storage.json",
        description="JSON file backing the persistent key-value store",
    )
    scratch_cache_dir: Path | None = Field(
        default=Path.home() / ".domgo" / "cache",
        description="On-disk scratch cache wiped on version change",
    )

    # Runtime identity
    app_version: str = Field(
        default="0.9.3",
        description="Application version",
    )
    build_version: str = Field(
        default="1.0.4",
        description="Build/runtime version",
    )
    update_id: str | None = Field(
        default=None,
        description="Identifier of the installed over-the-air update",
    )

    # Update checks
    update_feed_url: str = Field(
        default="https://api.github.com/repos/angstremoff/domgors/releases/latest",
        description="Release feed queried for newer versions",
    )
    update_check_interval: float = Field(
        default=24 * 60 * 60,
        ge=0,
        description="Minimum seconds between update checks",
    )
    update_check_timeout: float = Field(
        default=10.0,
        gt=0,
        description="Timeout of a single update-check attempt",
    )
    update_check_retries: int = Field(
        default=3,
        ge=1,
        description="Attempts per update check",
    )


# Singleton instance for easy import
config = Settings()
