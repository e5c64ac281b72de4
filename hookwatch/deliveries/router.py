"""Delivery monitor API router."""

from datetime import UTC, datetime
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from hookwatch.deliveries.aggregation import MessageAggregate
from hookwatch.deliveries.config import MonitorConfigLoader
from hookwatch.deliveries.decoder import decode_payloads
from hookwatch.deliveries.errors import MissingParameter, MonitorError
from hookwatch.deliveries.fetcher import UpstreamFetcher
from hookwatch.deliveries.loader import MonitorSession, registry
from hookwatch.deliveries.projection import (
    SortDirection,
    SortField,
    StatusFilter,
    project,
    status_of,
)
from hookwatch.deliveries.records import DeliveryAttempt, PayloadError, TimeWindow, parse_timestamp
from hookwatch.deliveries.schemas import (
    AttemptResponse,
    AttemptsResponse,
    LoadOlderResponse,
    MessageAggregateResponse,
    MessagePageResponse,
    MessagesResponse,
    PayloadErrorResponse,
    TimeWindowResponse,
)
from hookwatch.rate_limit import get_rate_limit_string, limiter
from hookwatch.valkey import SnapshotStore

router = APIRouter(tags=["deliveries"])


def get_fetcher() -> UpstreamFetcher:
    """Dependency for the upstream fetcher."""
    return UpstreamFetcher()


def _raise_http(error: MonitorError) -> NoReturn:
    raise HTTPException(status_code=error.status_code, detail=str(error)) from error


def _resolve_target(project_id: str | None, webhook_id: str | None) -> tuple[str, str]:
    """Fall back to the configured default target when none is given."""
    target = MonitorConfigLoader.get_config().default_target
    project_id = project_id or target.project_id
    webhook_id = webhook_id or target.webhook_id
    if not project_id or not webhook_id:
        _raise_http(
            MissingParameter("Missing required parameters: projectId and webhookId are required")
        )
    return project_id, webhook_id


def _normalize_before(before: datetime | None) -> datetime | None:
    return parse_timestamp(before) if before else None


def _window_response(window: TimeWindow) -> TimeWindowResponse:
    return TimeWindowResponse(
        start=window.start,
        end=window.end,
        older_data_available=window.older_data_available,
    )


def _attempt_response(attempt: DeliveryAttempt) -> AttemptResponse:
    return AttemptResponse(
        id=attempt.id,
        message_id=attempt.message_id,
        hook_id=attempt.hook_id,
        project_id=attempt.project_id,
        created_at=attempt.created_at,
        updated_at=attempt.updated_at,
        is_failure=attempt.is_failure,
        in_progress=attempt.in_progress,
        duration=attempt.duration,
        result_code=attempt.result_code,
        result_body=attempt.result_body,
        failure_reason=attempt.failure_reason,
    )


def _error_response(error: PayloadError) -> PayloadErrorResponse:
    return PayloadErrorResponse(id=error.id, error=error.error, payload=error.payload)


def _aggregate_response(
    aggregate: MessageAggregate, include_attempts: bool
) -> MessageAggregateResponse:
    return MessageAggregateResponse(
        message_id=aggregate.message_id,
        document_id=aggregate.document_id,
        hook_id=aggregate.hook_id,
        oldest_attempt=aggregate.oldest_attempt,
        newest_attempt=aggregate.newest_attempt,
        attempt_count=aggregate.attempt_count,
        success_rate=aggregate.success_rate,
        status=status_of(aggregate).value,
        latest_failure=(
            _attempt_response(aggregate.latest_failure) if aggregate.latest_failure else None
        ),
        parsing_error=aggregate.parsing_error,
        large_payload_failure=aggregate.large_payload_failure,
        attempts=(
            [_attempt_response(attempt) for attempt in aggregate.attempts]
            if include_attempts
            else []
        ),
    )


@router.get("/webhook-attempts", response_model=AttemptsResponse)
@limiter.limit(get_rate_limit_string())
async def list_attempts(
    request: Request,
    project_id: str | None = Query(None, alias="projectId"),
    webhook_id: str | None = Query(None, alias="webhookId"),
    before: datetime | None = Query(None, description="Load the window ending here"),
    fetcher: UpstreamFetcher = Depends(get_fetcher),
):
    """Fetch raw delivery attempts within the time window."""
    try:
        result = await fetcher.fetch_attempts(project_id, webhook_id, _normalize_before(before))
    except MonitorError as e:
        _raise_http(e)

    return AttemptsResponse(
        attempts=[_attempt_response(attempt) for attempt in result.records],
        has_more=result.has_more,
        time_window=_window_response(result.time_window),
    )


@router.get("/webhook-messages", response_model=MessagesResponse)
@limiter.limit(get_rate_limit_string())
async def list_messages(
    request: Request,
    project_id: str | None = Query(None, alias="projectId"),
    webhook_id: str | None = Query(None, alias="webhookId"),
    before: datetime | None = Query(None, description="Load the window ending here"),
    fetcher: UpstreamFetcher = Depends(get_fetcher),
):
    """Fetch messages and decode their document ids."""
    try:
        result = await fetcher.fetch_messages(project_id, webhook_id, _normalize_before(before))
    except MonitorError as e:
        _raise_http(e)

    decoded = decode_payloads(result.records)
    return MessagesResponse(
        document_ids=decoded.document_ids,
        messages_with_errors=[_error_response(error) for error in decoded.errors],
        timestamp=datetime.now(UTC),
        time_window=_window_response(result.time_window),
    )


def _page_response(
    session: MonitorSession,
    search: str,
    status: StatusFilter,
    sort: SortField,
    direction: SortDirection | None,
    page: int,
    per_page: int,
    include_attempts: bool,
) -> MessagePageResponse:
    projected = project(session.aggregates, search, status, sort, direction, page, per_page)
    return MessagePageResponse(
        items=[_aggregate_response(item, include_attempts) for item in projected.items],
        total=projected.total,
        page=projected.page,
        per_page=projected.per_page,
        total_pages=projected.total_pages,
        loading_state=session.loading_state.value,
        loaded_items=session.loaded_items,
        total_items=session.total_items,
        has_older_data=session.has_older_data,
        last_error=session.last_error,
        refreshed_at=session.refreshed_at,
        messages_with_errors=[_error_response(error) for error in session.messages_with_errors],
    )


@router.get("/messages", response_model=MessagePageResponse)
@limiter.limit(get_rate_limit_string())
async def list_aggregates(
    request: Request,
    project_id: str | None = Query(None, alias="projectId"),
    webhook_id: str | None = Query(None, alias="webhookId"),
    refresh: bool = Query(False, description="Reload the current window first"),
    search: str = Query("", description="Match message, document or hook id"),
    status: StatusFilter = Query(StatusFilter.ALL),
    sort: SortField = Query(SortField.NEWEST_ATTEMPT),
    direction: SortDirection | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(25, ge=1, le=500, alias="perPage"),
    include_attempts: bool = Query(False, alias="includeAttempts"),
    fetcher: UpstreamFetcher = Depends(get_fetcher),
):
    """List per-message aggregates, loading them on first access."""
    project_id, webhook_id = _resolve_target(project_id, webhook_id)
    session = registry.get(project_id, webhook_id)

    async with session.lock:
        if refresh or not session.loaded:
            try:
                await session.refresh(fetcher)
            except MonitorError as e:
                _raise_http(e)

        return _page_response(
            session, search, status, sort, direction, page, per_page, include_attempts
        )


@router.post("/messages/load-older", response_model=LoadOlderResponse)
@limiter.limit(get_rate_limit_string())
async def load_older(
    request: Request,
    project_id: str | None = Query(None, alias="projectId"),
    webhook_id: str | None = Query(None, alias="webhookId"),
    fetcher: UpstreamFetcher = Depends(get_fetcher),
):
    """Merge the window preceding the oldest loaded attempt."""
    project_id, webhook_id = _resolve_target(project_id, webhook_id)
    session = registry.get(project_id, webhook_id)

    async with session.lock:
        if not session.aggregates:
            raise HTTPException(status_code=409, detail="No data loaded yet")
        try:
            changed = await session.load_older(fetcher)
        except MonitorError as e:
            _raise_http(e)

        return LoadOlderResponse(
            changed=changed,
            total=len(session.aggregates),
            has_older_data=session.has_older_data,
        )


@router.get("/snapshot")
async def get_snapshot(
    project_id: str | None = Query(None, alias="projectId"),
    webhook_id: str | None = Query(None, alias="webhookId"),
):
    """Return the cached result of the last full fetch cycle, if still fresh."""
    project_id, webhook_id = _resolve_target(project_id, webhook_id)
    snapshot = await SnapshotStore.get(project_id, webhook_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No fresh snapshot")
    return snapshot
