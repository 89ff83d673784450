"""
Application configuration using Pydantic Settings.
Manages environment variables and default settings for the report grid.
"""
from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables and .env file.

    All settings can be overridden with environment variables using the aliases
    or the field names in uppercase (e.g., GRID_COLUMNS, REMOTE_URL).
    """
    # Storage locations
    data_dir: Path = Field(default_factory=lambda: Path("data"), alias="REPORTGRID_DATA_DIR")
    snapshot_dir: Path = Field(default_factory=lambda: Path("data/snapshots"), alias="REPORTGRID_SNAPSHOT_DIR")
    dashboard_config_file: Path = Field(
        default_factory=lambda: Path("data/dashboard-configs.json"),
        alias="REPORTGRID_DASHBOARD_CONFIGS"
    )

    # Grid geometry
    grid_columns: int = Field(12, alias="GRID_COLUMNS", ge=1)
    row_height_px: float = Field(30.0, alias="GRID_ROW_HEIGHT_PX", gt=0)
    min_rows: int = Field(2, alias="GRID_MIN_ROWS", ge=1)
    max_rows: int = Field(40, alias="GRID_MAX_ROWS", ge=1)

    # Auto-sizing timers
    measure_debounce_seconds: float = Field(0.12, alias="AUTOSIZE_DEBOUNCE_SECONDS", ge=0)
    shrink_confirm_seconds: float = Field(0.4, alias="AUTOSIZE_SHRINK_CONFIRM_SECONDS", ge=0)

    # Persistence scheduling
    persist_delay_seconds: float = Field(0.05, alias="PERSIST_DELAY_SECONDS", ge=0)

    # Client-side cache
    cache_max_size: int = Field(100, alias="CACHE_MAX_SIZE", ge=1)
    cache_default_ttl_seconds: float = Field(300.0, alias="CACHE_DEFAULT_TTL_SECONDS", gt=0)
    cache_sweep_interval_seconds: float = Field(60.0, alias="CACHE_SWEEP_INTERVAL_SECONDS", gt=0)

    # Remote replication
    remote_url: str | None = Field(default=None, alias="REMOTE_URL")
    remote_table: str = Field("report_widget_layouts", alias="REMOTE_TABLE")
    remote_api_key: str | None = Field(default=None, alias="REMOTE_API_KEY")
    remote_timeout_seconds: float = Field(10.0, alias="REMOTE_TIMEOUT_SECONDS", gt=0)
    remote_sync_attempts: int = Field(1, alias="REMOTE_SYNC_ATTEMPTS", ge=1)
    sync_workers: int = Field(2, alias="SYNC_WORKERS", ge=1)

    # Environment Settings
    environment: str = Field("development", alias="ENVIRONMENT")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore"
    )

    @field_validator('remote_url', mode='after')
    @classmethod
    def validate_remote_url(cls, v: str | None) -> str | None:
        """Require an http(s) scheme and drop trailing slashes."""
        if not v:
            return None
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"REMOTE_URL must start with http:// or https://, got '{v}'")
        return v.rstrip("/")

    @model_validator(mode='after')
    def validate_row_bounds(self) -> "Settings":
        if self.min_rows > self.max_rows:
            raise ValueError(
                f"GRID_MIN_ROWS ({self.min_rows}) cannot exceed GRID_MAX_ROWS ({self.max_rows})"
            )
        return self

    @property
    def remote_enabled(self) -> bool:
        """True when a remote store is configured."""
        return bool(self.remote_url)


# Global settings instance - automatically loads from environment and .env file
SETTINGS = Settings()


def mask_api_key(api_key: str | None) -> str:
    """
    Mask an API key for safe display.

    Never reveals any characters of the key.

    Args:
        api_key: API key to mask

    Returns:
        Masked API key string
    """
    if not api_key:
        return "Not configured"
    return "***configured***"


def get_configuration_summary(settings: Settings | None = None) -> dict:
    """
    Get a summary of all configuration for display.

    Returns:
        Dictionary with all configuration values (sensitive values masked)
    """
    settings = settings or SETTINGS
    return {
        'environment': settings.environment,
        'data_directory': str(settings.data_dir),
        'snapshot_directory': str(settings.snapshot_dir),
        'dashboard_config_file': str(settings.dashboard_config_file),
        'grid_columns': settings.grid_columns,
        'row_height_px': settings.row_height_px,
        'row_range': f"{settings.min_rows}-{settings.max_rows}",
        'persist_delay_seconds': settings.persist_delay_seconds,
        'cache_max_size': settings.cache_max_size,
        'cache_default_ttl_seconds': settings.cache_default_ttl_seconds,
        'remote_url': settings.remote_url or "Not configured",
        'remote_table': settings.remote_table,
        'remote_sync_attempts': settings.remote_sync_attempts,
        'remote_api_key': mask_api_key(settings.remote_api_key),
    }
