"""Valkey (Redis-compatible) client for the monitor snapshot cache."""

import json
import logging
from datetime import UTC, datetime
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from hookwatch.config import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()

# Global connection pool
_pool: redis.ConnectionPool | None = None


async def get_valkey() -> redis.Redis:
    """Get Valkey client with connection pooling."""
    global _pool
    if _pool is None:
        _pool = redis.ConnectionPool.from_url(
            settings.VALKEY_URL,
            decode_responses=True,
        )
    return redis.Redis(connection_pool=_pool)


async def close_valkey():
    """Close Valkey connection pool."""
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None


class SnapshotStore:
    """Last successful fetch cycle per monitored webhook.

    Write-only from the loader's point of view: a stored snapshot is never
    used to satisfy a merge.
    """

    PREFIX = "webhook-monitor-cache:"

    @classmethod
    def key(cls, project_id: str, webhook_id: str) -> str:
        return f"{cls.PREFIX}{project_id}:{webhook_id}"

    @classmethod
    async def save(cls, project_id: str, webhook_id: str, snapshot: dict[str, Any]) -> bool:
        """Save a snapshot with the freshness TTL. Returns False on failure."""
        try:
            client = await get_valkey()
            await client.setex(
                cls.key(project_id, webhook_id),
                settings.CACHE_TTL_SECONDS,
                json.dumps(snapshot),
            )
        except (RedisError, OSError) as e:
            logger.error("Failed to cache snapshot for %s/%s: %s", project_id, webhook_id, e)
            return False
        return True

    @classmethod
    async def get(cls, project_id: str, webhook_id: str) -> dict[str, Any] | None:
        """Get a snapshot if one is cached and still fresh."""
        try:
            client = await get_valkey()
            data = await client.get(cls.key(project_id, webhook_id))
        except (RedisError, OSError) as e:
            logger.error("Failed to read snapshot for %s/%s: %s", project_id, webhook_id, e)
            return None
        if not data:
            return None

        try:
            snapshot = json.loads(data)
            stored_at = datetime.fromisoformat(snapshot["timestamp"])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning("Ignoring unreadable snapshot for %s/%s: %s", project_id, webhook_id, e)
            return None
        if stored_at.tzinfo is None:
            stored_at = stored_at.replace(tzinfo=UTC)
        age = (datetime.now(UTC) - stored_at).total_seconds()
        if age > settings.CACHE_TTL_SECONDS:
            return None
        return snapshot
