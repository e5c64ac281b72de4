"""Incremental per-message aggregation of delivery attempts.

Attempts arrive in batches from overlapping, out-of-order fetches. ``merge``
groups them by message, derives statistics, and folds each batch into the
existing aggregate collection. Every derived field is recomputed from the
full member list of an aggregate, so the result depends only on the set of
attempt ids seen so far:

* re-merging a batch that was already merged changes nothing;
* merging disjoint batches in either order yields the same collection.

The engine is synchronous and pure. Callers own the collection and must
serialize calls against it.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime

from hookwatch.deliveries.records import DeliveryAttempt, PayloadError

logger = logging.getLogger(__name__)

LARGE_PAYLOAD_REASONS = ("payload too large", "request entity too large")
LARGE_PAYLOAD_BODIES = ("payload too large",)
HTTP_PAYLOAD_TOO_LARGE = 413


def is_large_payload_failure(attempt: DeliveryAttempt) -> bool:
    """Check whether a failed attempt was rejected for its payload size.

    Best-effort: matches the error formats observed from the upstream API
    and may both over- and under-match.
    """
    reason = (attempt.failure_reason or "").lower()
    body = (attempt.result_body or "").lower()
    return (
        any(marker in reason for marker in LARGE_PAYLOAD_REASONS)
        or any(marker in body for marker in LARGE_PAYLOAD_BODIES)
        or attempt.result_code == HTTP_PAYLOAD_TOO_LARGE
    )


def _attempt_order(attempt: DeliveryAttempt) -> tuple[datetime, str]:
    return attempt.created_at, attempt.id


@dataclass(frozen=True)
class MessageAggregate:
    """Rollup of every attempt observed for one message."""

    message_id: str
    attempts: tuple[DeliveryAttempt, ...]
    oldest_attempt: datetime
    newest_attempt: datetime
    attempt_count: int
    success_rate: float
    hook_id: str
    latest_failure: DeliveryAttempt | None = None
    document_id: str | None = None
    parsing_error: str | None = None
    large_payload_failure: bool = False

    @classmethod
    def from_attempts(
        cls,
        message_id: str,
        attempts: Iterable[DeliveryAttempt],
        document_id: str | None = None,
        parsing_error: str | None = None,
    ) -> MessageAggregate:
        """Derive an aggregate from its full member list.

        Raises ValueError for an empty member list.
        """
        members = tuple(sorted(attempts, key=_attempt_order))
        if not members:
            raise ValueError(f"Message {message_id} has no attempts")

        successes = sum(1 for attempt in members if not attempt.is_failure)
        failures = [attempt for attempt in members if attempt.is_failure]
        latest_failure = failures[-1] if failures else None

        return cls(
            message_id=message_id,
            attempts=members,
            oldest_attempt=members[0].created_at,
            newest_attempt=members[-1].created_at,
            attempt_count=len(members),
            success_rate=successes / len(members) * 100,
            hook_id=members[0].hook_id,
            latest_failure=latest_failure,
            document_id=document_id,
            parsing_error=parsing_error,
            large_payload_failure=(
                is_large_payload_failure(latest_failure) if latest_failure else False
            ),
        )

    @property
    def attempt_ids(self) -> frozenset[str]:
        return frozenset(attempt.id for attempt in self.attempts)

    def absorb(self, other: MessageAggregate) -> MessageAggregate:
        """Union another aggregate's attempts into this one.

        Returns ``self`` when ``other`` carries no attempt id not already
        present.
        """
        known = self.attempt_ids
        fresh = [attempt for attempt in other.attempts if attempt.id not in known]
        if not fresh:
            return self

        return MessageAggregate.from_attempts(
            self.message_id,
            [*self.attempts, *fresh],
            document_id=self.document_id or other.document_id,
            parsing_error=self.parsing_error or other.parsing_error,
        )


def group_attempts(attempts: Iterable[DeliveryAttempt]) -> dict[str, list[DeliveryAttempt]]:
    """Group attempts by message id.

    Attempts without a message id cannot be attributed and are dropped.
    Repeated attempt ids keep their first occurrence.
    """
    groups: dict[str, list[DeliveryAttempt]] = {}
    seen: set[str] = set()
    dropped = 0
    for attempt in attempts:
        if not attempt.message_id:
            dropped += 1
            continue
        if attempt.id in seen:
            continue
        seen.add(attempt.id)
        groups.setdefault(attempt.message_id, []).append(attempt)

    if dropped:
        logger.debug("Dropped %d attempts without a message id", dropped)
    return groups


def build_aggregates(
    attempts: Iterable[DeliveryAttempt],
    document_ids: Mapping[str, str] | None = None,
    parsing_errors: Iterable[PayloadError] = (),
) -> list[MessageAggregate]:
    """Group a batch and derive one aggregate per message."""
    document_ids = document_ids or {}
    error_map = {error.id: error.error for error in parsing_errors}

    return [
        MessageAggregate.from_attempts(
            message_id,
            members,
            document_id=document_ids.get(message_id) or None,
            parsing_error=error_map.get(message_id),
        )
        for message_id, members in group_attempts(attempts).items()
    ]


def sort_newest_first(aggregates: Iterable[MessageAggregate]) -> list[MessageAggregate]:
    """Order by newest attempt descending, then message id."""
    ordered = sorted(aggregates, key=lambda aggregate: aggregate.message_id)
    return sorted(ordered, key=lambda aggregate: aggregate.newest_attempt, reverse=True)


def merge(
    existing: Sequence[MessageAggregate],
    new_attempts: Iterable[DeliveryAttempt],
    document_ids: Mapping[str, str] | None = None,
    parsing_errors: Iterable[PayloadError] = (),
    incremental: bool = False,
) -> list[MessageAggregate]:
    """Fold a batch of attempts into an aggregate collection.

    Args:
        existing: Current aggregate collection (not modified)
        new_attempts: Newly fetched attempts, possibly overlapping
        document_ids: Message id to document id
        parsing_errors: Messages whose payload failed to decode
        incremental: Merge into ``existing`` instead of replacing it

    Returns:
        The updated collection, newest first
    """
    fresh = build_aggregates(new_attempts, document_ids, parsing_errors)
    if not incremental:
        return sort_newest_first(fresh)

    combined = {aggregate.message_id: aggregate for aggregate in existing}
    inserted = 0
    updated = 0
    for aggregate in fresh:
        current = combined.get(aggregate.message_id)
        if current is None:
            combined[aggregate.message_id] = aggregate
            inserted += 1
            continue

        merged = current.absorb(aggregate)
        if merged is not current:
            combined[aggregate.message_id] = merged
            updated += 1

    logger.debug("Merged batch: %d new messages, %d updated", inserted, updated)
    return sort_newest_first(combined.values())
