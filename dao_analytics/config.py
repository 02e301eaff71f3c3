"""
Configuration management via environment variables.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Supabase settings
    supabase_url: str = Field(
        ...,
        description="Supabase project URL",
    )
    supabase_anon_key: str = Field(
        ...,
        description="Supabase anon (public) API key",
    )
    custom_query_rpc: str = Field(
        default="execute_custom_query",
        description="Server-side function used when a query names no table",
    )

    # Query settings
    custom_query_max_rows: int = Field(
        default=100,
        le=100,
        description="LIMIT appended to custom queries that have none",
    )

    # Logging
    log_level: str = Field(default="INFO", description="Root log level")

    # Authentication settings
    enable_auth: bool = Field(
        default=False,
        description="Require an API key on /api routes",
    )
    team_api_key: str = Field(
        default="",
        description="Shared API key accepted in X-API-Key or Bearer header",
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed CORS origins",
    )

    # Rate limiting
    rate_limit_max_requests: int = Field(
        default=100,
        description="Requests allowed per client within the window",
    )
    rate_limit_window_seconds: int = Field(
        default=60,
        description="Sliding window length in seconds",
    )

    # Entity catalog
    catalog_file: str = Field(
        default="config/catalog.yaml",
        description="Path to YAML file listing candidate entity tables",
    )

    # Paths
    base_dir: Path = Field(
        default_factory=lambda: Path(__file__).parent.parent,
        description="Base directory of the application",
    )

    @computed_field
    @property
    def catalog_path(self) -> Path:
        return self.base_dir / self.catalog_file


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
