"""
Shared configuration management for the ICP lookup service.
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ICP_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # Cache store
    redis_url: str = "redis://localhost:6379/0"
    cache_backend: Literal["redis", "memory"] = "redis"
    read_ttl_seconds: int = Field(default=60, ge=0)

    # Upstream ICP service
    upstream_url: str = "https://hlwicpfwc.miit.gov.cn/icpproject_query/api"
    upstream_auth_secret: str = "testtest"
    upstream_timeout: float = 8.0
    circuit_failure_threshold: int = 5
    circuit_recovery_timeout: float = 30.0

    # Token slots (seconds)
    token_fresh_ttl: int = 120
    token_stale_ttl: int = 240

    # Query result slots (seconds)
    result_fresh_ttl: int = 3600
    error_fresh_ttl: int = 600
    result_stale_ttl: int = 86400

    # Request handling
    deadline_seconds: float = 10.0
    response_max_age: int = 60

    # Scheduled token warm loop, 0 disables it
    token_warm_interval: float = 0.0


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
