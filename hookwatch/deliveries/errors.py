"""Delivery monitor error types."""


class MonitorError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code = 500


class MissingParameter(MonitorError):
    """A required identifier (project or webhook) was not supplied."""

    status_code = 400


class Misconfiguration(MonitorError):
    """Upstream credentials or configuration are missing."""

    status_code = 500


class UpstreamUnavailable(MonitorError):
    """Every page request to the upstream API failed."""

    status_code = 502


class UpstreamPageFailure(Exception):
    """A single paginated request failed.

    Never propagates out of the fetcher; the page degrades to empty.
    """

    def __init__(self, offset: int, reason: str):
        super().__init__(f"page at offset {offset} failed: {reason}")
        self.offset = offset
        self.reason = reason


class PayloadDecodeFailure(ValueError):
    """A message payload could not be decoded into a document id."""
