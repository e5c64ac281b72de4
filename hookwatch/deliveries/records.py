"""Upstream delivery record models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def format_timestamp(value: datetime) -> str:
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class DeliveryAttempt:
    """One delivery try of a message to a webhook endpoint."""

    id: str
    message_id: str | None
    created_at: datetime
    is_failure: bool
    result_code: int | None = None
    result_body: str | None = None
    failure_reason: str | None = None
    hook_id: str = ""
    project_id: str | None = None
    in_progress: bool = False
    duration: int | None = None
    updated_at: datetime | None = None

    def to_payload(self) -> dict[str, Any]:
        """Convert to the upstream JSON shape."""
        return {
            "id": self.id,
            "messageId": self.message_id,
            "createdAt": format_timestamp(self.created_at),
            "isFailure": self.is_failure,
            "resultCode": self.result_code,
            "resultBody": self.result_body,
            "failureReason": self.failure_reason,
            "hookId": self.hook_id,
            "projectId": self.project_id,
            "inProgress": self.in_progress,
            "duration": self.duration,
            "updatedAt": format_timestamp(self.updated_at) if self.updated_at else None,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> DeliveryAttempt:
        """Create a DeliveryAttempt from upstream JSON.

        Raises KeyError or ValueError for records missing ``id`` or
        ``createdAt``, or carrying an unparseable timestamp.
        """
        updated_at = payload.get("updatedAt")
        result_code = payload.get("resultCode")
        return cls(
            id=str(payload["id"]),
            message_id=payload.get("messageId") or None,
            created_at=parse_timestamp(payload["createdAt"]),
            is_failure=bool(payload.get("isFailure", False)),
            result_code=int(result_code) if result_code is not None else None,
            result_body=payload.get("resultBody"),
            failure_reason=payload.get("failureReason"),
            hook_id=payload.get("hookId") or "",
            project_id=payload.get("projectId"),
            in_progress=bool(payload.get("inProgress", False)),
            duration=payload.get("duration"),
            updated_at=parse_timestamp(updated_at) if updated_at else None,
        )


@dataclass(frozen=True)
class Message:
    """Upstream event that one or more attempts deliver."""

    id: str
    created_at: datetime
    payload: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> Message:
        return cls(
            id=str(payload["id"]),
            created_at=parse_timestamp(payload["createdAt"]),
            payload=payload.get("payload"),
        )


@dataclass(frozen=True)
class TimeWindow:
    """Span of timestamps a fetch may return (inclusive at both ends)."""

    start: datetime
    end: datetime
    older_data_available: bool = True

    @classmethod
    def ending_at(cls, end: datetime, hours: int) -> TimeWindow:
        start = end - timedelta(hours=hours)
        return cls(start=start, end=end, older_data_available=start > EPOCH)

    def contains(self, timestamp: datetime) -> bool:
        return self.start <= timestamp <= self.end


@dataclass(frozen=True)
class PayloadError:
    """A message whose payload could not be decoded."""

    id: str
    error: str
    payload: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {"id": self.id, "error": self.error, "payload": self.payload}

