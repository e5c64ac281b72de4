"""Progressive loading of monitor sessions."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from hookwatch.deliveries.aggregation import MessageAggregate, merge
from hookwatch.deliveries.decoder import decode_payloads
from hookwatch.deliveries.errors import MonitorError, UpstreamUnavailable
from hookwatch.deliveries.fetcher import FetchResult, UpstreamFetcher
from hookwatch.deliveries.records import DeliveryAttempt, Message, PayloadError
from hookwatch.valkey import SnapshotStore

logger = logging.getLogger(__name__)

# First batch is merged alone so something is available quickly
INITIAL_BATCH_SIZE = 50
# Remaining attempts are replayed in chunks of this size
CHUNK_SIZE = 100
# "Load older" starts this far before the oldest known attempt
OLDER_OVERLAP = timedelta(minutes=1)


class LoadingState(StrEnum):
    IDLE = "idle"
    LOADING_INITIAL = "loading_initial"
    LOADING_FULL = "loading_full"
    COMPLETE = "complete"
    ERROR = "error"


class MonitorSession:
    """Aggregate collection for one project/webhook pair.

    The session is the only owner of its aggregates. Hold ``lock`` around
    ``refresh`` and ``load_older``; merges are not safe to interleave.
    """

    def __init__(self, project_id: str, webhook_id: str):
        self.project_id = project_id
        self.webhook_id = webhook_id
        self.lock = asyncio.Lock()
        self.aggregates: list[MessageAggregate] = []
        self.messages_with_errors: list[PayloadError] = []
        self.loading_state = LoadingState.IDLE
        self.loaded_items = 0
        self.total_items = 0
        self.has_older_data = True
        self.last_error: str | None = None
        self.refreshed_at: datetime | None = None

    @property
    def loaded(self) -> bool:
        return self.refreshed_at is not None

    async def refresh(self, fetcher: UpstreamFetcher) -> list[MessageAggregate]:
        """Reload the current window, replacing all aggregates.

        Attempts are merged progressively (a small first batch, then bounded
        chunks) while messages are still being fetched; once messages arrive
        the collection is rebuilt with document ids. Raises MonitorError when
        the attempts fetch fails.
        """
        self.loading_state = LoadingState.LOADING_INITIAL
        self.loaded_items = 0
        self.total_items = 0
        self.last_error = None

        messages_task = asyncio.create_task(
            fetcher.fetch_messages(self.project_id, self.webhook_id)
        )
        try:
            attempts_result = await fetcher.fetch_attempts(self.project_id, self.webhook_id)
        except MonitorError as e:
            messages_task.cancel()
            with suppress(asyncio.CancelledError, MonitorError):
                await messages_task
            self.loading_state = LoadingState.ERROR
            self.last_error = str(e)
            raise

        attempts = attempts_result.records
        await self._replay(attempts)

        try:
            messages_result = await messages_task
        except UpstreamUnavailable as e:
            logger.warning(
                "Messages unavailable for %s/%s, keeping attempts only: %s",
                self.project_id,
                self.webhook_id,
                e,
            )
            messages_result = None
        except MonitorError as e:
            self.loading_state = LoadingState.ERROR
            self.last_error = str(e)
            raise

        if messages_result is not None:
            decoded = decode_payloads(messages_result.records)
            self.aggregates = merge(
                [], attempts, decoded.document_ids, decoded.errors, incremental=False
            )
            self.messages_with_errors = decoded.errors
            await self._write_snapshot(attempts, decoded.document_ids, decoded.errors)

        self.loaded_items = len(attempts)
        self.has_older_data = True
        self.refreshed_at = datetime.now(UTC)
        self.loading_state = LoadingState.COMPLETE
        logger.info(
            "Refreshed %s/%s: %d attempts across %d messages",
            self.project_id,
            self.webhook_id,
            len(attempts),
            len(self.aggregates),
        )
        return self.aggregates

    async def load_older(self, fetcher: UpstreamFetcher) -> int:
        """Merge in the window preceding the oldest known attempt.

        Returns the number of messages added or changed.
        """
        if not self.aggregates:
            return 0

        oldest = min(aggregate.oldest_attempt for aggregate in self.aggregates)
        before = oldest - OLDER_OVERLAP

        attempts_result, messages_result = await asyncio.gather(
            fetcher.fetch_attempts(self.project_id, self.webhook_id, before),
            self._fetch_messages_or_none(fetcher, before),
        )

        if not attempts_result.records:
            self.has_older_data = False
            logger.info("No attempts before %s for %s/%s", before, self.project_id, self.webhook_id)
            return 0

        decoded = decode_payloads(messages_result.records if messages_result else [])
        previous = {aggregate.message_id: aggregate for aggregate in self.aggregates}
        self.aggregates = merge(
            self.aggregates,
            attempts_result.records,
            decoded.document_ids,
            decoded.errors,
            incremental=True,
        )
        known = {error.id for error in self.messages_with_errors}
        self.messages_with_errors += [e for e in decoded.errors if e.id not in known]

        changed = sum(
            1 for aggregate in self.aggregates if previous.get(aggregate.message_id) is not aggregate
        )
        logger.info(
            "Loaded older data for %s/%s: %d messages added or updated",
            self.project_id,
            self.webhook_id,
            changed,
        )
        return changed

    async def _replay(self, attempts: list[DeliveryAttempt]) -> None:
        """Merge attempts in bounded chunks, yielding between them."""
        initial = attempts[:INITIAL_BATCH_SIZE]
        self.aggregates = merge([], initial, incremental=False)
        self.messages_with_errors = []
        self.loading_state = LoadingState.LOADING_FULL
        self.total_items = len(attempts)
        self.loaded_items = len(initial)

        for start in range(len(initial), len(attempts), CHUNK_SIZE):
            chunk = attempts[start : start + CHUNK_SIZE]
            self.aggregates = merge(self.aggregates, chunk, incremental=True)
            self.loaded_items = start + len(chunk)
            await asyncio.sleep(0)

    async def _fetch_messages_or_none(
        self, fetcher: UpstreamFetcher, before: datetime
    ) -> FetchResult[Message] | None:
        try:
            return await fetcher.fetch_messages(self.project_id, self.webhook_id, before)
        except UpstreamUnavailable as e:
            logger.warning("Messages unavailable before %s: %s", before, e)
            return None

    async def _write_snapshot(
        self,
        attempts: list[DeliveryAttempt],
        document_ids: dict[str, str],
        errors: list[PayloadError],
    ) -> None:
        snapshot = {
            "attempts": [attempt.to_payload() for attempt in attempts],
            "documentIds": document_ids,
            "messagesWithErrors": [error.to_payload() for error in errors],
            "timestamp": datetime.now(UTC).isoformat(),
            "hasMoreData": True,
        }
        await SnapshotStore.save(self.project_id, self.webhook_id, snapshot)


class MonitorRegistry:
    """In-process sessions keyed by project and webhook id."""

    def __init__(self):
        self._sessions: dict[tuple[str, str], MonitorSession] = {}

    def get(self, project_id: str, webhook_id: str) -> MonitorSession:
        key = (project_id, webhook_id)
        session = self._sessions.get(key)
        if session is None:
            session = MonitorSession(project_id, webhook_id)
            self._sessions[key] = session
        return session

    def sessions(self) -> list[MonitorSession]:
        return list(self._sessions.values())

    def clear(self) -> None:
        self._sessions.clear()


registry = MonitorRegistry()
