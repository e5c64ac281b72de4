"""Application configuration."""

import os
from functools import lru_cache


class Settings:
    """Application settings."""

    # Environment
    TESTING: bool = os.getenv("TESTING", "").lower() in ("1", "true", "yes")

    # Valkey (Redis-compatible)
    VALKEY_URL: str = os.getenv("VALKEY_URL", "redis://localhost:6379/0")

    # Snapshot cache freshness (seconds)
    CACHE_TTL_SECONDS: int = int(os.getenv("CACHE_TTL_SECONDS", "300"))

    # Monitor configuration file (fetch tuning, default target, token reference)
    MONITOR_CONFIG_PATH: str = os.getenv("MONITOR_CONFIG_PATH", "config/monitor.yaml")

    # Rate Limiting
    RATE_LIMIT_PER_MINUTE: int = int(os.getenv("RATE_LIMIT_PER_MINUTE", "30"))

    # CORS
    CORS_ORIGINS: list[str] = os.getenv(
        "CORS_ORIGINS", "http://localhost:3000,http://localhost:5173"
    ).split(",")


@lru_cache
def get_settings() -> Settings:
    return Settings()
