"""Configuration management for the ads insights pipeline.

Provides Pydantic-based configuration classes for type-safe, validated configuration
management using environment variables.
"""

import os

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ATTRIBUTION_WINDOWS = ["1d_click", "7d_click", "28d_click", "1d_view", "7d_view"]


class AdsPlatformConfig(BaseSettings):
    """Meta Marketing API (Graph API insights) configuration."""

    access_token: str = Field(default="", description="Long-lived Graph API access token")
    api_version: str = Field(default="v20.0", description="Graph API version segment")
    base_url: str = Field(default="https://graph.facebook.com", description="Graph API base URL")
    connect_timeout: float = Field(default=10.0, description="Seconds to wait for a TCP connection")
    read_timeout: float = Field(default=60.0, description="Seconds to wait for a response body")
    max_retries: int = Field(default=3, description="Retry attempts for transient failures (429, 5xx, timeouts)")
    retry_base_delay: float = Field(default=1.0, description="Base delay in seconds for exponential backoff")
    page_limit: int = Field(default=500, description="Records requested per page")
    max_pages: int = Field(default=50, description="Upper bound on pages followed per dimension")
    max_concurrent_requests: int = Field(default=3, description="Dimension requests issued in parallel")
    attribution_windows: str = Field(
        default=",".join(DEFAULT_ATTRIBUTION_WINDOWS),
        description="Comma-separated action attribution windows",
    )

    model_config = SettingsConfigDict(env_prefix="FB_", case_sensitive=False)

    @field_validator("api_version")
    @classmethod
    def validate_api_version(cls, v):
        """Graph API versions look like 'v20.0'."""
        if not v.startswith("v"):
            raise ValueError("FB_API_VERSION must look like 'v20.0'")
        return v

    @property
    def attribution_window_list(self) -> list[str]:
        return [window.strip() for window in self.attribution_windows.split(",") if window.strip()]

    @property
    def is_configured(self) -> bool:
        return bool(self.access_token)


class PipelineConfig(BaseSettings):
    """Collection, caching and analytics tuning."""

    cache_ttl_seconds: int = Field(default=3600, description="Analytics snapshot freshness window")
    roi_profitable_threshold: float = Field(default=2.0, description="ROAS above which a campaign is profitable")
    roi_break_even_threshold: float = Field(default=1.0, description="ROAS at or above which a campaign breaks even")
    batch_delay_ms: int = Field(default=5000, description="Pause between clients in a batch run")
    continue_on_error: bool = Field(default=True, description="Keep processing clients after a failure")
    max_date_range_days: int = Field(default=35, description="Date ranges longer than this produce a warning")
    collection_window_days: int = Field(default=30, description="Default lookback when no period is given")

    model_config = SettingsConfigDict(env_prefix="PIPELINE_", case_sensitive=False)

    @field_validator("roi_break_even_threshold")
    @classmethod
    def validate_break_even(cls, v, info):
        profitable = info.data.get("roi_profitable_threshold")
        if profitable is not None and v > profitable:
            raise ValueError("roi_break_even_threshold must not exceed roi_profitable_threshold")
        return v


class DatabaseConfig(BaseSettings):
    """Database configuration."""

    url: str | None = Field(default=None, description="Database connection URL")
    type: str = Field(default="postgresql", description="Database type")
    query_timeout: int = Field(default=30, description="statement_timeout in seconds")
    connect_timeout: int = Field(default=10, description="Connection timeout in seconds")
    pool_timeout: int = Field(default=30, description="Seconds to wait for a pooled connection")

    model_config = SettingsConfigDict(env_prefix="DATABASE_", case_sensitive=False)


class AppConfig(BaseSettings):
    """Main application configuration."""

    debug: bool = Field(default=False, description="Enable debug mode")
    environment: str = Field(default="development", description="Environment: production, staging, or development")

    # BaseSettings subclasses read from environment; mypy doesn't understand this pattern
    platform: AdsPlatformConfig = Field(default_factory=AdsPlatformConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    model_config = SettingsConfigDict(env_prefix="", case_sensitive=False)


# Global configuration instance
_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig()
    return _config


def reset_config() -> None:
    """Drop the cached configuration so the next access re-reads the environment."""
    global _config
    _config = None


def is_production() -> bool:
    """Check if running in production environment.

    Returns:
        bool: True if ENVIRONMENT=production, False otherwise
    """
    return os.getenv("ENVIRONMENT", "development").lower() == "production"
