"""
Pydantic models and value types shared across the bridge.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ConfigOverrides(BaseModel):
    """
    Partial tuning parameters.

    Every field is independently optional; None means "not set at this layer".
    """
    model_config = ConfigDict(frozen=True)

    timeout_seconds: Optional[float] = None
    poll_interval_ms: Optional[int] = None
    max_result_age_seconds: Optional[int] = None
    query_id: Optional[str] = None

    def merged(self, other: ConfigOverrides) -> ConfigOverrides:
        """Return a copy with the fields set on `other` written over this one."""
        return self.model_copy(update=other.model_dump(exclude_none=True))

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


class InboundOverrides(BaseModel):
    """Credential and tuning values carried by one set of inbound headers."""
    model_config = ConfigDict(frozen=True)

    credential: Optional[str] = None
    config: ConfigOverrides = Field(default_factory=ConfigOverrides)


@dataclass(frozen=True)
class EffectiveConfig:
    """Fully resolved parameters for one invocation."""
    credential: Optional[str]
    timeout_seconds: float
    poll_interval_ms: int
    max_result_age_seconds: Optional[int]
    query_id: str

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000


class GetDataArguments(BaseModel):
    """Input of the getData tool."""
    org: str = Field(description="Organization domain to fetch usage data for")

    @field_validator("org")
    @classmethod
    def _org_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("org must be a non-empty string")
        return value
