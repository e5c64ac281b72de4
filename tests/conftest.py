"""Pytest configuration and fixtures."""

import json
import os
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test environment before importing app
os.environ["TESTING"] = "1"

from hookwatch.deliveries.config import (
    FetchSettings,
    MonitorConfig,
    MonitorConfigLoader,
    MonitorTarget,
    UpstreamSettings,
)
from hookwatch.deliveries.fetcher import UpstreamFetcher
from hookwatch.deliveries.loader import registry
from hookwatch.deliveries.records import DeliveryAttempt, Message
from hookwatch.deliveries.router import get_fetcher
from hookwatch.main import app

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def make_attempt(
    attempt_id: str,
    message_id: str | None = "m1",
    minutes_ago: int = 0,
    is_failure: bool = False,
    result_code: int | None = None,
    failure_reason: str | None = None,
    result_body: str | None = None,
    hook_id: str = "hook-1",
) -> DeliveryAttempt:
    """Build an attempt anchored relative to NOW."""
    return DeliveryAttempt(
        id=attempt_id,
        message_id=message_id,
        created_at=NOW - timedelta(minutes=minutes_ago),
        is_failure=is_failure,
        result_code=result_code if result_code is not None else (500 if is_failure else 200),
        result_body=result_body,
        failure_reason=failure_reason,
        hook_id=hook_id,
    )


def make_message(message_id: str, minutes_ago: int = 0, document_id: str | None = "doc-1"):
    payload = json.dumps({"after": {"_id": document_id}}) if document_id else None
    return Message(id=message_id, created_at=NOW - timedelta(minutes=minutes_ago), payload=payload)


def page_handler(
    attempts: list[dict] | None = None,
    messages: list[dict] | None = None,
    failing_offsets: set[int] | None = None,
    status_code: int = 500,
) -> Callable[[httpx.Request], httpx.Response]:
    """Serve upstream pages from in-memory record lists."""
    failing_offsets = failing_offsets or set()

    def handler(request: httpx.Request) -> httpx.Response:
        offset = int(request.url.params.get("offset", "0"))
        limit = int(request.url.params.get("limit", "50"))
        if offset in failing_offsets:
            return httpx.Response(status_code, json={"error": "boom"})
        records = attempts if request.url.path.endswith("/attempts") else messages
        return httpx.Response(200, json=(records or [])[offset : offset + limit])

    return handler


@pytest.fixture
def monitor_config() -> MonitorConfig:
    """Monitor config with a literal token and small pages."""
    return MonitorConfig(
        upstream=UpstreamSettings(token_ref="test-token"),
        fetch=FetchSettings(page_size=2, max_pages=3, concurrency=2),
        default_target=MonitorTarget(project_id="proj", webhook_id="hook"),
    )


@pytest.fixture(autouse=True)
def loaded_config(monitor_config):
    """Install the test config for every test and reset sessions."""
    MonitorConfigLoader._config = monitor_config
    registry.clear()
    yield monitor_config
    MonitorConfigLoader._config = None
    registry.clear()


@pytest.fixture
def make_fetcher(monitor_config):
    """Build a fetcher backed by an httpx.MockTransport handler."""

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> UpstreamFetcher:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return UpstreamFetcher(config=monitor_config, client=client, clock=lambda: NOW)

    return _make


@pytest.fixture
def mock_redis():
    """Mock Valkey client."""
    mock = AsyncMock()
    mock.get.return_value = None
    mock.setex.return_value = True
    return mock


@pytest_asyncio.fixture
async def client(mock_redis) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with mocked Valkey."""

    async def mock_get_valkey():
        return mock_redis

    with patch("hookwatch.valkey.get_valkey", mock_get_valkey):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def use_fetcher():
    """Route API requests through a given fetcher."""

    def _use(fetcher: UpstreamFetcher) -> None:
        app.dependency_overrides[get_fetcher] = lambda: fetcher

    return _use
