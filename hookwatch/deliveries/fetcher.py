"""Upstream hooks API fetcher."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Generic, TypeVar

import httpx

from hookwatch.deliveries.config import MonitorConfig, MonitorConfigLoader
from hookwatch.deliveries.errors import (
    MissingParameter,
    Misconfiguration,
    UpstreamPageFailure,
    UpstreamUnavailable,
)
from hookwatch.deliveries.records import DeliveryAttempt, Message, TimeWindow

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", DeliveryAttempt, Message)


@dataclass
class FetchResult(Generic[RecordT]):
    """Concatenated, window-filtered records from every page."""

    records: list[RecordT] = field(default_factory=list)
    time_window: TimeWindow | None = None
    has_more: bool = False
    failed_pages: int = 0


def page_offsets(page_size: int, max_pages: int, max_offset: int) -> list[int]:
    """Offsets for each page, kept below the upstream offset limit."""
    return [page * page_size for page in range(max_pages) if page * page_size < max_offset]


class UpstreamFetcher:
    """Bounded, parallel, paginated retrieval of attempts and messages."""

    def __init__(
        self,
        config: MonitorConfig | None = None,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        """
        Initialize the fetcher.

        Args:
            config: Monitor configuration (defaults to the loaded config file)
            client: Shared HTTP client; a short-lived one is opened per call if omitted
            clock: Returns the current time, for anchoring default windows
        """
        self._config = config
        self._client = client
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def config(self) -> MonitorConfig:
        return self._config or MonitorConfigLoader.get_config()

    def attempts_window(self, before: datetime | None = None) -> TimeWindow:
        fetch = self.config.fetch
        if before:
            return TimeWindow.ending_at(before, fetch.older_window_hours)
        return TimeWindow.ending_at(self._clock(), fetch.attempts_window_hours)

    def messages_window(self, before: datetime | None = None) -> TimeWindow:
        fetch = self.config.fetch
        if before:
            return TimeWindow.ending_at(before, fetch.older_window_hours)
        return TimeWindow.ending_at(self._clock(), fetch.messages_window_hours)

    async def fetch_attempts(
        self,
        project_id: str | None,
        webhook_id: str | None,
        before: datetime | None = None,
    ) -> FetchResult[DeliveryAttempt]:
        """Fetch delivery attempts within the current (or previous) window."""
        project_id, webhook_id = self._require_target(project_id, webhook_id)
        url = self.config.upstream.build_attempts_url(project_id, webhook_id)
        window = self.attempts_window(before)
        result = await self._fetch_pages(url, window, DeliveryAttempt.from_payload, "attempts")
        logger.info(
            "Fetched %d attempts between %s and %s",
            len(result.records),
            window.start.isoformat(),
            window.end.isoformat(),
        )
        return result

    async def fetch_messages(
        self,
        project_id: str | None,
        webhook_id: str | None,
        before: datetime | None = None,
    ) -> FetchResult[Message]:
        """Fetch messages within the window, newest first."""
        project_id, webhook_id = self._require_target(project_id, webhook_id)
        url = self.config.upstream.build_messages_url(project_id, webhook_id)
        window = self.messages_window(before)
        result = await self._fetch_pages(url, window, Message.from_payload, "messages")
        result.records.sort(key=lambda message: message.created_at, reverse=True)
        logger.info(
            "Fetched %d messages between %s and %s",
            len(result.records),
            window.start.isoformat(),
            window.end.isoformat(),
        )
        return result

    @staticmethod
    def _require_target(project_id: str | None, webhook_id: str | None) -> tuple[str, str]:
        project_id = (project_id or "").strip()
        webhook_id = (webhook_id or "").strip()
        if not project_id or not webhook_id:
            raise MissingParameter(
                "Missing required parameters: projectId and webhookId are required"
            )
        return project_id, webhook_id

    def _headers(self) -> dict[str, str]:
        token = MonitorConfigLoader.resolve_token(self.config)
        if not token:
            raise Misconfiguration("Upstream API token is not configured")
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }

    async def _fetch_pages(
        self,
        url: str,
        window: TimeWindow,
        factory: Callable[[dict[str, Any]], RecordT],
        kind: str,
    ) -> FetchResult[RecordT]:
        """Issue every page request concurrently and join them, degrading failures."""
        fetch = self.config.fetch
        headers = self._headers()
        offsets = page_offsets(fetch.page_size, fetch.max_pages, fetch.max_offset)
        semaphore = asyncio.Semaphore(fetch.concurrency)

        logger.debug("Starting %d parallel requests for %s", len(offsets), kind)

        async def run(client: httpx.AsyncClient) -> list[list[dict[str, Any]] | None]:
            async def guarded(offset: int) -> list[dict[str, Any]] | None:
                async with semaphore:
                    try:
                        return await self._fetch_page(client, url, headers, offset)
                    except UpstreamPageFailure as e:
                        logger.error("Error fetching %s: %s", kind, e)
                        return None

            return await asyncio.gather(*(guarded(offset) for offset in offsets))

        if self._client is not None:
            pages = await run(self._client)
        else:
            async with httpx.AsyncClient(timeout=fetch.request_timeout_seconds) as client:
                pages = await run(client)

        failed = sum(1 for page in pages if page is None)
        if offsets and failed == len(offsets):
            raise UpstreamUnavailable(f"All {failed} page requests for {kind} failed")

        records: list[RecordT] = []
        for offset, page in zip(offsets, pages):
            if not page:
                continue
            in_window = 0
            for raw in page:
                try:
                    record = factory(raw)
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning("Skipping malformed %s record at offset %d: %s", kind, offset, e)
                    continue
                if window.contains(record.created_at):
                    records.append(record)
                    in_window += 1
            logger.debug(
                "%d of %d %s within window at offset %d", in_window, len(page), kind, offset
            )

        return FetchResult(
            records=records,
            time_window=window,
            has_more=(
                len(offsets) >= fetch.max_pages
                or len(offsets) * fetch.page_size >= fetch.max_offset
            ),
            failed_pages=failed,
        )

    async def _fetch_page(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str],
        offset: int,
    ) -> list[dict[str, Any]]:
        """Fetch one page; raises UpstreamPageFailure on any transport or HTTP error."""
        params = {"limit": self.config.fetch.page_size, "offset": offset}
        try:
            response = await client.get(url, params=params, headers=headers)
        except httpx.TimeoutException as e:
            raise UpstreamPageFailure(offset, "Request timeout") from e
        except httpx.RequestError as e:
            raise UpstreamPageFailure(offset, str(e)[:500]) from e

        if not 200 <= response.status_code < 300:
            raise UpstreamPageFailure(
                offset,
                f"API responded with status {response.status_code} - {response.text[:500]}",
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamPageFailure(offset, f"Invalid JSON: {e}") from e
        if not isinstance(data, list):
            raise UpstreamPageFailure(offset, "Expected a list of records")
        return data
