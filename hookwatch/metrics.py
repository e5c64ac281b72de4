"""Prometheus metrics endpoint."""

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from hookwatch.deliveries.loader import registry
from hookwatch.deliveries.projection import StatusFilter, status_of

router = APIRouter(tags=["metrics"])


def _label(value: str) -> str:
    """Escape a Prometheus label value."""
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


@router.get("/metrics", response_class=PlainTextResponse)
async def metrics():
    """Prometheus-compatible metrics endpoint."""

    metrics_output = [f"hookwatch_sessions_total {len(registry.sessions())}"]

    for session in registry.sessions():
        labels = f'project="{_label(session.project_id)}",webhook="{_label(session.webhook_id)}"'
        aggregates = session.aggregates

        metrics_output.append(f"hookwatch_messages{{{labels}}} {len(aggregates)}")
        metrics_output.append(
            f"hookwatch_attempts{{{labels}}} {sum(a.attempt_count for a in aggregates)}"
        )

        # Messages by delivery status
        for status in (StatusFilter.SUCCESS, StatusFilter.FAILED, StatusFilter.PARTIAL):
            count = sum(1 for a in aggregates if status_of(a) == status)
            metrics_output.append(
                f'hookwatch_messages_by_status{{{labels},status="{status.value}"}} {count}'
            )

        large = sum(1 for a in aggregates if a.large_payload_failure)
        metrics_output.append(f"hookwatch_large_payload_failures{{{labels}}} {large}")
        metrics_output.append(
            f"hookwatch_payload_parse_errors{{{labels}}} {len(session.messages_with_errors)}"
        )

    return "\n".join(metrics_output) + "\n"
