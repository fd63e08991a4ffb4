from __future__ import annotations

import random
import string
import time
from typing import Optional

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .batcher import BatcherConfig
from .errors import ConfigurationError
from .models import FrameworkName

DEFAULT_ENDPOINT = "https://api.identro.com"


def generate_agent_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"agent-{int(time.time() * 1000)}-{suffix}"


class IdentroSettings(BaseSettings):
    """Client configuration, read from keyword arguments, IDENTRO_* env vars or .env."""

    model_config = SettingsConfigDict(
        env_prefix="IDENTRO_",
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    api_key: str
    endpoint: str = DEFAULT_ENDPOINT

    batch_size: int = 100
    flush_interval_ms: int = 1000
    max_retries: int = 3
    retry_delay_ms: int = 1000
    max_retry_delay_ms: int = 30_000
    retry_jitter: bool = False
    queue_capacity: int = 10_000
    queue_path: Optional[str] = None
    request_timeout: float = 10.0

    throw_on_error: bool = False
    agent_id: str = Field(default_factory=generate_agent_id)
    framework: FrameworkName = "custom"

    @field_validator("api_key")
    @classmethod
    def _require_api_key(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("API key is required")
        return v

    @field_validator("endpoint")
    @classmethod
    def _strip_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @field_validator(
        "batch_size",
        "flush_interval_ms",
        "max_retries",
        "retry_delay_ms",
        "max_retry_delay_ms",
        "queue_capacity",
        "request_timeout",
    )
    @classmethod
    def _positive(cls, v):
        if v <= 0:
            raise ValueError("must be > 0")
        return v

    def batcher_config(self) -> BatcherConfig:
        return BatcherConfig(
            batch_size=self.batch_size,
            flush_interval_ms=self.flush_interval_ms,
            max_retries=self.max_retries,
            retry_delay_ms=self.retry_delay_ms,
            max_retry_delay_ms=self.max_retry_delay_ms,
            retry_jitter=self.retry_jitter,
        )


def load_settings(**overrides) -> IdentroSettings:
    """Build settings, surfacing validation problems as ConfigurationError."""
    if "base_url" in overrides:
        base_url = overrides.pop("base_url")
        overrides.setdefault("endpoint", base_url)
    try:
        return IdentroSettings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(str(e)) from e
