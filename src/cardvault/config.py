"""Configuration management using pydantic-settings."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _get_data_dir() -> Path:
    """Get default directory for local database files."""
    return Path.home() / ".cardvault"


def _get_default_reference_db_path() -> Path:
    """Get default path to the downloaded reference catalog."""
    return _get_data_dir() / "reference.sqlite"


def _get_default_app_db_path() -> Path:
    """Get default path to the application database."""
    return _get_data_dir() / "app_data.sqlite"


def _get_default_lorcana_db_path() -> Path:
    """Get default path to the Lorcana database."""
    return _get_data_dir() / "lorcana.sqlite"


def _get_default_download_dir() -> Path:
    """Get default directory for temporary downloads (price files)."""
    return Path.home() / ".cache" / "cardvault" / "downloads"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Database paths
    reference_db_path: Path = Field(
        default_factory=_get_default_reference_db_path,
        description="Path to the reference catalog database (cards, sets, prices)",
    )
    app_db_path: Path = Field(
        default_factory=_get_default_app_db_path,
        description="Path to the application database (collections, cache, scans)",
    )
    lorcana_db_path: Path = Field(
        default_factory=_get_default_lorcana_db_path,
        description="Path to the Lorcana database",
    )
    download_dir: Path = Field(
        default_factory=_get_default_download_dir,
        description="Directory for downloaded price files",
    )

    # Remote sources
    reference_db_url: str = Field(
        default="https://mtgjson.com/api/v5/AllPrintings.sqlite.gz",
        description="Download URL of the reference catalog",
    )
    price_data_url: str = Field(
        default="https://mtgjson.com/api/v5/AllPricesToday.json.zip",
        description="Download URL of today's price file",
    )
    scryfall_api_base: str = Field(default="https://api.scryfall.com")
    lorcana_bulk_url: str = Field(default="https://api.lorcana-api.com/bulk/cards")
    lorcast_search_url: str = Field(default="https://api.lorcast.com/v0/cards/search")
    user_agent: str = Field(default="cardvault/0.1")
    http_timeout_seconds: float = Field(
        default=30.0,
        description="Timeout for API requests (bulk downloads use a longer read timeout)",
    )
    min_request_interval_ms: int = Field(
        default=100,
        description="Minimum delay between Scryfall requests",
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    # Query performance logging
    log_slow_queries: bool = Field(
        default=False,
        description="Enable logging of slow database queries",
    )
    slow_query_threshold_ms: int = Field(
        default=100,
        description="Threshold in milliseconds for slow query warnings",
    )

    # Connection pooling
    db_max_connections: int = Field(
        default=5,
        description="Maximum concurrent database operations (semaphore limit)",
    )

    # Price history
    price_retention_days: int = Field(default=30, ge=1)
    price_batch_size: int = Field(
        default=1000,
        ge=1,
        description="Rows written per transaction during price imports",
    )
    price_stale_hours: int = Field(
        default=24,
        description="Age after which cached prices are refreshed in the background",
    )

    # Scanning
    scan_cooldown_ms: int = Field(default=1000, ge=0)
    scan_min_length: int = Field(default=3, ge=1)
    scan_recent_window_ms: int = Field(
        default=30_000,
        description="Interval after which the recently-seen scan texts are forgotten",
    )
    scan_history_guard_size: int = Field(
        default=5,
        description="Persisted scans re-checked for near-simultaneous duplicates",
    )

    # In-memory caches
    set_list_ttl_seconds: int = Field(default=24 * 3600)
    set_page_ttl_seconds: int = Field(default=300)
    expensive_cards_ttl_seconds: int = Field(default=300)

    # Background work
    background_concurrency: int = Field(
        default=5,
        ge=1,
        description="Maximum concurrent background price refreshes",
    )


# Singleton instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get application settings (cached singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
