"""
Configuration and settings for the content API.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

IN_MEMORY_DATABASE_URL = "sqlite+pysqlite:///:memory:"


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")

    # Database (Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # Response cache (Redis)
    redis_url: Optional[str] = Field(default=None)
    cache_response: bool = Field(default=True)
    cache_ttl_seconds: int = Field(default=60, gt=0)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    @property
    def effective_database_url(self) -> str:
        if self.use_in_memory_backends or not self.database_url:
            return IN_MEMORY_DATABASE_URL
        return self.database_url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
