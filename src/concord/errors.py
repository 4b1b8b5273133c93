"""Error taxonomy for concord.

Callers distinguish "gave up waiting" (RequestTimeoutError) from "was told to
stop" (RequestCancelledError). A rejected moderation verdict is a result, not
an error; ModerationError only means evaluation could not complete.
"""

from __future__ import annotations


class ConcordError(Exception):
    """Base exception for all concord errors."""


class DeduplicationError(ConcordError):
    """Base class for failures raised by the request deduplicator."""

    def __init__(self, key: str, message: str):
        self.key = key
        super().__init__(message)


class RequestTimeoutError(DeduplicationError):
    """A deduplicated operation exceeded its deadline."""

    def __init__(self, key: str, timeout: float):
        self.timeout = timeout
        super().__init__(key, f"Request timed out after {timeout:g}s: {key}")


class RequestCancelledError(DeduplicationError):
    """A deduplicated operation was explicitly aborted."""

    def __init__(self, key: str, reason: str = "cancelled"):
        self.reason = reason
        super().__init__(key, f"Request {reason}: {key}")


class DeduplicatorClosedError(RequestCancelledError):
    """The deduplicator has been shut down and accepts no new work."""

    def __init__(self, key: str):
        super().__init__(key, reason="rejected, deduplicator is closed")


class ProviderError(ConcordError):
    """The remote data provider failed.

    ``transient`` marks failures worth retrying (network errors, 5xx,
    timeouts). Constraint violations, auth and not-found errors are not.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        transient: bool = False,
    ):
        self.status_code = status_code
        self.code = code
        self.transient = transient
        super().__init__(message)


class ModerationError(ConcordError):
    """Content evaluation could not be completed."""


class TermListUnavailableError(ModerationError):
    """No sensitive term list could be fetched and no cached copy exists."""
