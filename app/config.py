"""Application configuration models."""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="AIOCatalogs", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    addon_version: str = Field(default="1.0.0", alias="ADDON_VERSION")
    addon_description: str = Field(
        default="Combine your favourite Stremio catalog addons into one.",
        alias="ADDON_DESCRIPTION",
    )
    addon_logo_url: HttpUrl | None = Field(
        default="https://cdn.ssx.si/u/LSXKCT.png", alias="ADDON_LOGO_URL"
    )
    addon_background_url: HttpUrl | None = Field(
        default="https://i.imgur.com/QPPXf5T.jpeg", alias="ADDON_BACKGROUND_URL"
    )

    upstream_timeout_seconds: float = Field(
        default=15.0, alias="UPSTREAM_TIMEOUT", ge=1, le=120
    )
    upstream_connect_timeout_seconds: float = Field(
        default=5.0, alias="UPSTREAM_CONNECT_TIMEOUT", ge=0.5, le=120
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./aiocatalogs.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_log_level(cls, value: object) -> str:
        """Accept level names in any case."""

        if value is None or value == "":
            return "INFO"
        level = str(value).strip().upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("addon_logo_url", "addon_background_url", mode="before")
    @classmethod
    def _blank_url_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @model_validator(mode="after")
    def _check_timeouts(self) -> "Settings":
        if self.upstream_connect_timeout_seconds > self.upstream_timeout_seconds:
            raise ValueError(
                "UPSTREAM_CONNECT_TIMEOUT must not exceed UPSTREAM_TIMEOUT"
            )
        return self

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
