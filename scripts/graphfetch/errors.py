"""Exception hierarchy for the fetch engine and its collaborators."""

from __future__ import annotations

from typing import Optional


class GraphFetchError(Exception):
    """Base class for every error raised by graphfetch."""


class AuthError(GraphFetchError):
    """Credentials were rejected or a token could not be acquired. Fatal."""


class TransportError(GraphFetchError):
    """A batch call failed below the per-step level (network, 5xx, bad body)."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class UnknownResourceError(GraphFetchError):
    """The resource path has no registered request builder."""


class ResolutionError(GraphFetchError):
    """A request could not be built for one identifier."""

    def __init__(self, identifier: str, reason: str) -> None:
        super().__init__(f"cannot resolve {identifier!r}: {reason}")
        self.identifier = identifier
        self.reason = reason


class StepFailedError(GraphFetchError):
    """A step inside a batch returned an unexpected status."""

    def __init__(self, identifier: str, status: int, detail: str) -> None:
        super().__init__(f"{identifier}: HTTP {status}: {detail}")
        self.identifier = identifier
        self.status = status
        self.detail = detail


class FetchCancelledError(GraphFetchError):
    """The run was stopped before every identifier reached a terminal outcome."""


class DuplicateOutcomeError(GraphFetchError):
    """An identifier was recorded twice. Indicates an engine bug."""


class CompletionOverflowError(GraphFetchError):
    """More terminal outcomes were signalled than identifiers exist."""


class QueueClosedError(GraphFetchError):
    """A batch was pushed onto a closed work queue."""
