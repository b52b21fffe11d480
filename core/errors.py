# core/errors.py
"""
Failures raised at the boundary with external services.

Pure components (resolver, renderer, simulator) never raise these; they report
problems through sentinel values or findings lists.
"""


class ReasoningServiceError(Exception):
    """The reasoning service failed (network error, non-2xx, bad payload)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ReasoningTimeout(ReasoningServiceError):
    """The reasoning service did not answer within the configured window."""


class EventStreamError(ReasoningServiceError):
    """The phase-event stream broke off or could not be opened."""


class TurnCancelled(Exception):
    """A turn was abandoned because a newer query superseded it. Not an error."""
