"""Exception hierarchy for the tracking service."""

from __future__ import annotations


class TrackingError(Exception):
    """Base exception for all tracking service errors."""


class ReportValidationError(TrackingError):
    """A vehicle id or position report failed validation."""

    def __init__(self, message: str, *, details: list[dict[str, str]] | None = None) -> None:
        self.details = details or []
        super().__init__(message)


class MalformedMessage(TrackingError):
    """A stream payload could not be decoded into a JSON object."""


class UpstreamUnavailable(TrackingError):
    """The latest-state cache, history store or stream could not be reached."""

    def __init__(self, message: str, *, resource: str) -> None:
        self.resource = resource
        super().__init__(message)


class ExternalFeedFailure(TrackingError):
    """Third-party feed unreachable, non-success, malformed or timed out."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)
