"""Search, filter, sort and paginate aggregate collections."""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from enum import StrEnum

from hookwatch.deliveries.aggregation import MessageAggregate


class StatusFilter(StrEnum):
    ALL = "all"
    SUCCESS = "success"
    FAILED = "failed"
    PARTIAL = "partial"


class SortField(StrEnum):
    MESSAGE_ID = "messageId"
    DOCUMENT_ID = "documentId"
    OLDEST_ATTEMPT = "oldestAttempt"
    NEWEST_ATTEMPT = "newestAttempt"
    ATTEMPT_COUNT = "attemptCount"
    SUCCESS_RATE = "successRate"


class SortDirection(StrEnum):
    ASC = "asc"
    DESC = "desc"


@dataclass
class Page:
    items: list[MessageAggregate]
    total: int
    page: int
    per_page: int
    total_pages: int


def status_of(aggregate: MessageAggregate) -> StatusFilter:
    if aggregate.success_rate == 100:
        return StatusFilter.SUCCESS
    if aggregate.success_rate == 0:
        return StatusFilter.FAILED
    return StatusFilter.PARTIAL


def search(aggregates: Sequence[MessageAggregate], query: str) -> list[MessageAggregate]:
    """Case-insensitive substring match on message, document and hook ids."""
    needle = query.lower()
    if not needle:
        return list(aggregates)
    return [
        aggregate
        for aggregate in aggregates
        if needle in aggregate.message_id.lower()
        or (aggregate.document_id and needle in aggregate.document_id.lower())
        or needle in aggregate.hook_id.lower()
    ]


def filter_by_status(
    aggregates: Sequence[MessageAggregate], status: StatusFilter
) -> list[MessageAggregate]:
    if status == StatusFilter.ALL:
        return list(aggregates)
    return [aggregate for aggregate in aggregates if status_of(aggregate) == status]


def default_direction(field: SortField) -> SortDirection:
    """Dates and counts start descending; identifiers and rates ascending."""
    if field in (SortField.OLDEST_ATTEMPT, SortField.NEWEST_ATTEMPT, SortField.ATTEMPT_COUNT):
        return SortDirection.DESC
    return SortDirection.ASC


def sort_aggregates(
    aggregates: Sequence[MessageAggregate],
    field: SortField = SortField.NEWEST_ATTEMPT,
    direction: SortDirection = SortDirection.DESC,
) -> list[MessageAggregate]:
    """Stable sort by one field.

    Aggregates without a document id sort before those with one when
    ascending, after them when descending.
    """
    reverse = direction == SortDirection.DESC

    if field == SortField.DOCUMENT_ID:
        return sorted(
            aggregates,
            key=lambda a: (a.document_id is not None, a.document_id or ""),
            reverse=reverse,
        )

    keys = {
        SortField.MESSAGE_ID: lambda a: a.message_id,
        SortField.OLDEST_ATTEMPT: lambda a: a.oldest_attempt,
        SortField.NEWEST_ATTEMPT: lambda a: a.newest_attempt,
        SortField.ATTEMPT_COUNT: lambda a: a.attempt_count,
        SortField.SUCCESS_RATE: lambda a: a.success_rate,
    }
    return sorted(aggregates, key=keys[field], reverse=reverse)


def paginate(aggregates: Sequence[MessageAggregate], page: int = 1, per_page: int = 25) -> Page:
    """Slice one page; out-of-range pages are clamped to the last page."""
    per_page = max(per_page, 1)
    total = len(aggregates)
    total_pages = math.ceil(total / per_page)
    page = min(max(page, 1), max(total_pages, 1))
    start = (page - 1) * per_page
    return Page(
        items=list(aggregates[start : start + per_page]),
        total=total,
        page=page,
        per_page=per_page,
        total_pages=total_pages,
    )


def project(
    aggregates: Sequence[MessageAggregate],
    query: str = "",
    status: StatusFilter = StatusFilter.ALL,
    field: SortField = SortField.NEWEST_ATTEMPT,
    direction: SortDirection | None = None,
    page: int = 1,
    per_page: int = 25,
) -> Page:
    """Apply search, status filter, sort and pagination in that order."""
    selected = filter_by_status(search(aggregates, query), status)
    ordered = sort_aggregates(selected, field, direction or default_direction(field))
    return paginate(ordered, page, per_page)
