"""
Shared configuration management for the advanced request manager.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RequestSettings(BaseSettings):
    """Process-wide defaults for request lifecycles.

    Every value can be overridden with an ``ADVREQ_``-prefixed environment
    variable or a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="ADVREQ_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Logging
    log_level: str = Field(default="info")

    # Retry
    default_max_retries: int = Field(default=10, ge=0)
    transport_error_backoff: float = Field(default=10.0, ge=0)
    timeout_backoff: float = Field(default=0.1, ge=0)

    # Transport
    transport_timeout: float = Field(default=60.0, gt=0)
    timeout_margin: float = Field(default=2.0, ge=0)
    verify_tls: bool = Field(default=True)
    user_agent: str = Field(default="advanced-request/1.0")

    # Throttling
    intervals_file: Optional[str] = Field(default=None)
    spacing_policy: str = Field(default="completion", pattern="^(completion|dispatch)$")
    # Prometheus exposition port for the process collector; off when unset
    metrics_port: Optional[int] = Field(default=None, ge=1, le=65535)


@lru_cache(maxsize=1)
def get_settings() -> RequestSettings:
    """Get the cached process settings."""
    return RequestSettings()


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()
