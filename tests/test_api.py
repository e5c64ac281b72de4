"""Tests for the delivery monitor API."""

import json
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from conftest import NOW, page_handler
from httpx import AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError

from hookwatch.deliveries.config import MonitorConfig, UpstreamSettings
from hookwatch.deliveries.fetcher import UpstreamFetcher


def attempt_json(attempt_id, message_id, minutes_ago, is_failure=False, result_code=200):
    return {
        "id": attempt_id,
        "messageId": message_id,
        "hookId": "hook",
        "projectId": "proj",
        "createdAt": (NOW - timedelta(minutes=minutes_ago)).isoformat(),
        "isFailure": is_failure,
        "resultCode": result_code,
        "resultBody": "Payload Too Large" if result_code == 413 else "ok",
        "failureReason": None,
    }


@pytest.fixture
def upstream():
    attempts = [
        attempt_json("a1", "m1", 30),
        attempt_json("a2", "m1", 20, is_failure=True, result_code=413),
        attempt_json("a3", "m2", 10),
        attempt_json("a4", None, 5),
    ]
    messages = [
        {
            "id": "m1",
            "createdAt": (NOW - timedelta(minutes=30)).isoformat(),
            "payload": json.dumps({"after": {"_id": "doc-1"}}),
        },
        {"id": "m2", "createdAt": (NOW - timedelta(minutes=10)).isoformat(), "payload": "{nope"},
    ]
    return page_handler(attempts=attempts, messages=messages)


@pytest.fixture
def wired(make_fetcher, use_fetcher, upstream):
    fetcher = make_fetcher(upstream)
    use_fetcher(fetcher)
    return fetcher


class TestRawEndpoints:
    @pytest.mark.asyncio
    async def test_attempts(self, client: AsyncClient, wired):
        response = await client.get(
            "/api/webhook-attempts", params={"projectId": "proj", "webhookId": "hook"}
        )

        assert response.status_code == 200
        data = response.json()
        assert [a["id"] for a in data["attempts"]] == ["a1", "a2", "a3", "a4"]
        assert data["attempts"][0]["messageId"] == "m1"
        assert data["hasMore"] is True
        assert data["timeWindow"]["olderDataAvailable"] is True

    @pytest.mark.asyncio
    async def test_messages(self, client: AsyncClient, wired):
        response = await client.get(
            "/api/webhook-messages", params={"projectId": "proj", "webhookId": "hook"}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["documentIds"] == {"m1": "doc-1"}
        assert [e["id"] for e in data["messagesWithErrors"]] == ["m2"]
        assert data["messagesWithErrors"][0]["payload"] == "{nope"
        assert "timestamp" in data

    @pytest.mark.asyncio
    async def test_missing_parameters(self, client: AsyncClient, wired):
        response = await client.get("/api/webhook-attempts", params={"projectId": "proj"})

        assert response.status_code == 400
        assert "webhookId" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_misconfiguration(self, client: AsyncClient, use_fetcher, upstream, monkeypatch):
        monkeypatch.delenv("HOOKWATCH_MISSING_TOKEN", raising=False)
        config = MonitorConfig(upstream=UpstreamSettings(token_ref="${HOOKWATCH_MISSING_TOKEN}"))
        http = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
        use_fetcher(UpstreamFetcher(config=config, client=http, clock=lambda: NOW))

        response = await client.get(
            "/api/webhook-messages", params={"projectId": "proj", "webhookId": "hook"}
        )

        assert response.status_code == 500

    @pytest.mark.asyncio
    async def test_upstream_down(self, client: AsyncClient, make_fetcher, use_fetcher):
        use_fetcher(make_fetcher(page_handler(failing_offsets={0, 2, 4}, status_code=503)))

        response = await client.get(
            "/api/webhook-attempts", params={"projectId": "proj", "webhookId": "hook"}
        )

        assert response.status_code == 502


class TestAggregateEndpoints:
    @pytest.mark.asyncio
    async def test_list_loads_on_first_access(self, client: AsyncClient, wired, mock_redis):
        response = await client.get("/api/messages", params={"includeAttempts": "true"})

        assert response.status_code == 200
        data = response.json()
        assert data["loadingState"] == "complete"
        assert data["total"] == 2
        items = {item["messageId"]: item for item in data["items"]}
        assert items["m1"]["attemptCount"] == 2
        assert items["m1"]["successRate"] == 50
        assert items["m1"]["documentId"] == "doc-1"
        assert items["m1"]["largePayloadFailure"] is True
        assert items["m1"]["status"] == "partial"
        assert items["m1"]["latestFailure"]["resultCode"] == 413
        assert len(items["m1"]["attempts"]) == 2
        assert items["m2"]["documentId"] is None
        assert items["m2"]["parsingError"]
        # Newest first by default
        assert [item["messageId"] for item in data["items"]] == ["m2", "m1"]
        mock_redis.setex.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_filter_and_sort(self, client: AsyncClient, wired):
        response = await client.get(
            "/api/messages",
            params={"status": "success", "sort": "messageId", "direction": "asc"},
        )

        data = response.json()
        assert [item["messageId"] for item in data["items"]] == ["m2"]
        assert data["items"][0]["attempts"] == []

    @pytest.mark.asyncio
    async def test_search(self, client: AsyncClient, wired):
        response = await client.get("/api/messages", params={"search": "DOC-1"})
        assert [item["messageId"] for item in response.json()["items"]] == ["m1"]

    @pytest.mark.asyncio
    async def test_invalid_status(self, client: AsyncClient, wired):
        response = await client.get("/api/messages", params={"status": "bogus"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_load_older_requires_data(self, client: AsyncClient, wired):
        response = await client.post("/api/messages/load-older")
        assert response.status_code == 409

    @pytest.mark.asyncio
    async def test_load_older(self, client: AsyncClient, wired):
        await client.get("/api/messages")

        response = await client.post("/api/messages/load-older")

        assert response.status_code == 200
        data = response.json()
        # The mock upstream has nothing older than the first window
        assert data["changed"] == 0
        assert data["total"] == 2
        assert data["hasOlderData"] is False

    @pytest.mark.asyncio
    async def test_metrics(self, client: AsyncClient, wired):
        await client.get("/api/messages")

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert 'hookwatch_messages{project="proj",webhook="hook"} 2' in response.text
        assert (
            'hookwatch_messages_by_status{project="proj",webhook="hook",status="partial"} 1'
            in response.text
        )
        assert 'hookwatch_large_payload_failures{project="proj",webhook="hook"} 1' in response.text


class TestSnapshotEndpoint:
    @pytest.mark.asyncio
    async def test_missing_snapshot(self, client: AsyncClient):
        response = await client.get("/api/snapshot")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_fresh_snapshot(self, client: AsyncClient, mock_redis):
        snapshot = {
            "attempts": [],
            "documentIds": {},
            "messagesWithErrors": [],
            "timestamp": datetime.now(UTC).isoformat(),
            "hasMoreData": True,
        }
        mock_redis.get.return_value = json.dumps(snapshot)

        response = await client.get("/api/snapshot")

        assert response.status_code == 200
        assert response.json() == snapshot
        mock_redis.get.assert_awaited_with("webhook-monitor-cache:proj:hook")

    @pytest.mark.asyncio
    async def test_stale_snapshot(self, client: AsyncClient, mock_redis):
        mock_redis.get.return_value = json.dumps({"timestamp": "2000-01-01T00:00:00+00:00"})

        response = await client.get("/api/snapshot")

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_snapshot_with_valkey_down(self, client: AsyncClient, mock_redis):
        mock_redis.get.side_effect = RedisConnectionError("down")

        response = await client.get("/api/snapshot", params={"projectId": "p", "webhookId": "w"})

        assert response.status_code == 404
