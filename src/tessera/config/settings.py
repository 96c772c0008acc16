from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="TESSERA_",
        env_file=".env",
        extra="ignore",
    )

    # Runtime
    ENVIRONMENT: str = Field(default="dev", description="Environment name")
    HOST: str = Field(default="0.0.0.0", description="Bind host")
    PORT: int = Field(default=7920, description="Bind port")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")

    # Database
    DATABASE_URL: str = Field(default="sqlite:///tessera_dev.db")
    TEST_DATABASE_URL: str = Field(default="sqlite:///:memory:")
    SQL_ECHO: bool = Field(default=False, description="Echo SQL statements")

    # Auth (built-in / dev-first)
    JWT_SECRET_KEY: str = Field(
        default="tessera-dev-secret-change-me",
        description="HS256 secret for dev; override in production",
    )
    JWT_ACCESS_TOKEN_TTL_SECONDS: int = Field(
        default=3600, description="Access token TTL seconds"
    )
    AUTH_LEEWAY_SECONDS: int = Field(
        default=0, description="JWT exp leeway seconds"
    )

    # Policy placeholders
    TODAY_TIMEZONE: str = Field(
        default="UTC",
        description="IANA timezone used to compute the {today} placeholder",
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
