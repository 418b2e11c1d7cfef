"""
Configuration management for the query cache layer.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class QueryCacheSettings(BaseSettings):
    """Settings shared by every QueryCache client."""

    model_config = SettingsConfigDict(
        env_prefix="QUERYCACHE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # External services
    redis_url: str = "redis://localhost:6379/0"
    postgres_dsn: str = "postgres://localhost:5432/app"
    socket_timeout: float = Field(default=5.0, gt=0)

    # Caching
    default_ttl: int = Field(default=60, gt=0)
    namespace_prefix: str = "ns:"
    key_prefix: str = "qc:"

    # Observability
    logging_enabled: bool = False
    log_level: str = "info"


def get_settings(**overrides) -> QueryCacheSettings:
    """Load settings from the environment, applying keyword overrides."""
    return QueryCacheSettings(**overrides)
