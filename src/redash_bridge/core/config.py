"""
Process-wide configuration for the Redash bridge.

Defaults come from environment variables (or a local .env file). They form
the lowest configurable layer of the per-invocation resolution; see
resolver.py for how session and per-request values are stacked on top.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Used only when neither the request, the session nor REDASH_QUERY_ID name a query.
DEFAULT_QUERY_ID = "35173"

PositiveSeconds = Annotated[float, Field(gt=0, allow_inf_nan=False)]


class Settings(BaseSettings):
    """Bridge settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Upstream engine
    REDASH_URL: str = "https://redash.postmanlabs.com"
    REDASH_KEY: Optional[str] = None
    REDASH_QUERY_ID: Optional[str] = None

    # Polling
    QUERY_TIMEOUT_SECONDS: PositiveSeconds = 60
    QUERY_POLL_MS: Annotated[int, Field(gt=0)] = 2000
    QUERY_MAX_AGE_SECONDS: Optional[Annotated[int, Field(ge=0)]] = None
    HTTP_TIMEOUT_SECONDS: PositiveSeconds = 30.0

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 3000
    LOG_LEVEL: str = "INFO"

    @field_validator("REDASH_KEY", "REDASH_QUERY_ID", "QUERY_MAX_AGE_SECONDS", mode="before")
    @classmethod
    def _blank_is_unset(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value


@lru_cache
def get_settings() -> Settings:
    """Get the cached process settings."""
    return Settings()
