"""Rate limiting configuration."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from hookwatch.config import get_settings

settings = get_settings()

# Every monitor request fans out into several upstream page requests
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[f"{settings.RATE_LIMIT_PER_MINUTE}/minute"],
    storage_uri="memory://" if settings.TESTING else settings.VALKEY_URL,
    enabled=not settings.TESTING,
)


def get_rate_limit_string() -> str:
    """Get current rate limit as string for route decorators."""
    return f"{settings.RATE_LIMIT_PER_MINUTE}/minute"
