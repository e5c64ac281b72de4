"""Delivery monitor Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Serializes with camelCase keys, matching the upstream API."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TimeWindowResponse(CamelModel):
    start: datetime = Field(..., description="Window start (inclusive)")
    end: datetime = Field(..., description="Window end (inclusive)")
    older_data_available: bool = Field(..., description="Whether older data may exist")


class AttemptResponse(CamelModel):
    """Single delivery attempt."""

    id: str = Field(..., description="Attempt ID")
    message_id: str | None = Field(None, description="Parent message ID")
    hook_id: str = Field("", description="Webhook ID")
    project_id: str | None = Field(None, description="Project ID")
    created_at: datetime = Field(..., description="When the attempt was made")
    updated_at: datetime | None = Field(None, description="Last upstream update")
    is_failure: bool = Field(..., description="Whether the attempt failed")
    in_progress: bool = Field(False, description="Whether the attempt is still running")
    duration: int | None = Field(None, description="Duration in milliseconds")
    result_code: int | None = Field(None, description="HTTP status returned by the target")
    result_body: str | None = Field(None, description="Response body returned by the target")
    failure_reason: str | None = Field(None, description="Upstream failure description")


class PayloadErrorResponse(CamelModel):
    id: str = Field(..., description="Message ID")
    error: str = Field(..., description="Decode error")
    payload: str | None = Field(None, description="First 100 characters of the payload")


class AttemptsResponse(CamelModel):
    """Raw attempts within a time window."""

    attempts: list[AttemptResponse]
    has_more: bool = Field(..., description="Page limit reached; more data may exist")
    time_window: TimeWindowResponse


class MessagesResponse(CamelModel):
    """Document ids decoded from messages within a time window."""

    document_ids: dict[str, str] = Field(..., description="Message ID to document ID")
    messages_with_errors: list[PayloadErrorResponse]
    timestamp: datetime = Field(..., description="When the response was produced")
    time_window: TimeWindowResponse


class MessageAggregateResponse(CamelModel):
    """Per-message rollup of delivery attempts."""

    message_id: str
    document_id: str | None = None
    hook_id: str
    oldest_attempt: datetime
    newest_attempt: datetime
    attempt_count: int
    success_rate: float
    status: str = Field(..., description="success, failed or partial")
    latest_failure: AttemptResponse | None = None
    parsing_error: str | None = None
    large_payload_failure: bool = False
    attempts: list[AttemptResponse] = Field(default_factory=list)


class MessagePageResponse(CamelModel):
    """One page of projected aggregates plus load progress."""

    items: list[MessageAggregateResponse]
    total: int
    page: int
    per_page: int
    total_pages: int
    loading_state: str
    loaded_items: int
    total_items: int
    has_older_data: bool
    last_error: str | None = None
    refreshed_at: datetime | None = None
    messages_with_errors: list[PayloadErrorResponse] = Field(default_factory=list)


class LoadOlderResponse(CamelModel):
    changed: int = Field(..., description="Messages added or updated")
    total: int = Field(..., description="Messages now tracked")
    has_older_data: bool
