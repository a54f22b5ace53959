"""
Configuration and settings for the storefront service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Storage selection
    storage_backend: Literal["auto", "memory", "postgres", "supabase"] = Field(
        default="auto"
    )
    use_in_memory_backends: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "STOREFRONT_USE_IN_MEMORY_BACKENDS", "use_in_memory_backends"
        ),
    )

    # Relational database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)
    db_pool_size: int = Field(default=5, ge=1)
    db_pool_timeout_seconds: float = Field(default=30.0, gt=0)
    db_connect_timeout_seconds: int = Field(default=10, ge=1)
    db_statement_timeout_ms: Optional[int] = Field(default=30_000)

    # Hosted service (Supabase)
    supabase_url: Optional[str] = Field(default=None)
    supabase_key: Optional[str] = Field(default=None)
    # Direct connection string of the hosted project's database.
    supabase_db_url: Optional[str] = Field(default=None)
    hosted_timeout_seconds: float = Field(default=10.0, gt=0)

    # Sessions
    session_cookie_name: str = Field(default="storefront.sid")
    session_ttl_seconds: int = Field(default=7 * 24 * 3600, ge=60)
    session_prune_interval_seconds: float = Field(default=900.0, ge=0)

    @property
    def hosted_database_url(self) -> Optional[str]:
        return self.supabase_db_url or self.database_url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
