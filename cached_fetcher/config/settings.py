"""Configuration management using pydantic-settings."""
from pydantic import Field
from pydantic_settings import BaseSettings


class CacheSettings(BaseSettings):
    """Cache defaults loaded from CACHED_FETCHER_* environment variables."""

    # Seconds before a committed entry goes stale; <= 0 never expires
    default_ttl: float = 60.0

    # Seconds between background sweeps of expired entries; 0 disables
    clean_interval: float = Field(default=0.0, ge=0)

    # Keep fetcher errors in the cache (replayed until the TTL passes)
    cache_errors: bool = False

    # Serve stale values while refreshing in the background
    double_buffer: bool = False

    class Config:
        env_prefix = "CACHED_FETCHER_"
        env_file = ".env"
        env_file_encoding = "utf-8"
