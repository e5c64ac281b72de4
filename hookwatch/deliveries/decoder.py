"""Document id extraction from message payloads."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from hookwatch.deliveries.errors import PayloadDecodeFailure
from hookwatch.deliveries.records import Message, PayloadError

logger = logging.getLogger(__name__)

SNIPPET_LENGTH = 100


@dataclass
class DecodeResult:
    """Document ids keyed by message id, plus per-message failures."""

    document_ids: dict[str, str] = field(default_factory=dict)
    errors: list[PayloadError] = field(default_factory=list)


def extract_document_id(payload: str) -> str:
    """Return ``after._id`` from a serialized message payload.

    Raises PayloadDecodeFailure when the payload is not a JSON string or
    the path is missing.
    """
    try:
        document = json.loads(payload)
    except (json.JSONDecodeError, TypeError) as e:
        raise PayloadDecodeFailure(str(e)) from e

    after = document.get("after") if isinstance(document, dict) else None
    document_id = after.get("_id") if isinstance(after, dict) else None
    if not isinstance(document_id, str) or not document_id:
        raise PayloadDecodeFailure("Payload has no after._id")
    return document_id


def decode_payloads(messages: Iterable[Message]) -> DecodeResult:
    """Decode every message independently; one bad payload never blocks others."""
    result = DecodeResult()
    for message in messages:
        if not message.payload:
            continue
        try:
            result.document_ids[message.id] = extract_document_id(message.payload)
        except PayloadDecodeFailure as e:
            result.errors.append(
                PayloadError(
                    id=message.id,
                    error=str(e),
                    payload=str(message.payload)[:SNIPPET_LENGTH],
                )
            )

    logger.info("Extracted document IDs for %d messages", len(result.document_ids))
    if result.errors:
        logger.warning("Found %d messages with payload parsing errors", len(result.errors))
    return result
