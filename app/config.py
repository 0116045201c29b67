"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="StashMirror", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    stash_url: HttpUrl = Field(
        default="http://localhost:9999/graphql", alias="STASH_URL"
    )
    stash_api_key: str | None = Field(default=None, alias="STASH_API_KEY")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./stashmirror.db", alias="DATABASE_URL"
    )

    sync_interval_minutes: int = Field(
        default=60, alias="SYNC_INTERVAL_MINUTES", ge=1, le=10_080
    )
    full_sync_interval_hours: int = Field(
        default=24, alias="FULL_SYNC_INTERVAL_HOURS", ge=1
    )
    sync_on_startup: bool = Field(default=True, alias="SYNC_ON_STARTUP")
    sync_page_size: int = Field(
        default=500, alias="SYNC_PAGE_SIZE", ge=1, le=5_000
    )
    sql_batch_size: int = Field(default=500, alias="SQL_BATCH_SIZE", ge=1, le=5_000)
    upstream_timeout_seconds: float = Field(
        default=300.0, alias="UPSTREAM_TIMEOUT", gt=0
    )
    upstream_retries: int = Field(default=3, alias="UPSTREAM_RETRIES", ge=0, le=10)

    query_timeout_seconds: float = Field(
        default=15.0, alias="QUERY_TIMEOUT_SECONDS", gt=0
    )
    default_page_size: int = Field(default=40, alias="DEFAULT_PAGE_SIZE", ge=1)
    max_page_size: int = Field(default=500, alias="MAX_PAGE_SIZE", ge=1)

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("stash_url", mode="before")
    @classmethod
    def _normalise_stash_url(cls, value: object) -> object:
        """Point bare server URLs at the GraphQL endpoint."""

        if not isinstance(value, str):
            return value
        cleaned = value.strip().rstrip("/")
        if not cleaned:
            raise ValueError("STASH_URL must not be empty")
        if not cleaned.endswith("/graphql"):
            cleaned = f"{cleaned}/graphql"
        return cleaned

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> str:
        level = str(value or "INFO").strip().upper()
        if level not in {"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"}:
            raise ValueError("LOG_LEVEL must be a standard logging level name")
        return level

    @field_validator("stash_api_key", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _check_page_sizes(self) -> "Settings":
        """Keep the default page size inside the configured maximum."""

        if self.default_page_size > self.max_page_size:
            raise ValueError("DEFAULT_PAGE_SIZE must not exceed MAX_PAGE_SIZE")
        return self

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
