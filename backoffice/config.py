"""
Configuration and settings for the backoffice API.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")

    # "production" disables the admin development bypass.
    app_env: str = Field(default="production")

    # Database (Postgres expected; any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Access tokens issued by the managed auth service
    jwt_secret: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("jwt_secret", "SUPABASE_JWT_SECRET", "JWT_SECRET"),
    )
    jwt_audience: Optional[str] = Field(default="authenticated")
    jwt_algorithms: list[str] = Field(default_factory=lambda: ["HS256"])

    # Logging
    log_level: str = Field(default="INFO")
    json_logs: bool = Field(default=False)

    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173"]
    )

    @property
    def is_production(self) -> bool:
        return self.app_env.strip().lower() == "production"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
