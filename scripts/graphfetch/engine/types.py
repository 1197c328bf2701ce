"""Value types shared by the engine, the resolver and the transport."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Union


@dataclass(frozen=True)
class RequestDescriptor:
    """One executable request inside a ``$batch`` call."""

    method: str
    url: str
    headers: dict[str, str] = field(default_factory=dict)
    body: Optional[Any] = None


@dataclass(frozen=True)
class Batch:
    """A non-empty group of identifiers submitted together.

    ``attempt`` counts rate-limit resubmissions and ``transport_attempt``
    counts resubmissions after a failed batch call.
    """

    identifiers: tuple[str, ...]
    attempt: int = 0
    transport_attempt: int = 0

    def __post_init__(self) -> None:
        if not self.identifiers:
            raise ValueError("a batch needs at least one identifier")

    def __len__(self) -> int:
        return len(self.identifiers)

    def retry(
        self,
        identifiers: Iterable[str],
        *,
        rate_limited: bool = False,
        transport_failed: bool = False,
    ) -> "Batch":
        """Build the follow-up batch holding only the still-pending identifiers."""
        return Batch(
            identifiers=tuple(identifiers),
            attempt=self.attempt + (1 if rate_limited else 0),
            transport_attempt=self.transport_attempt + (1 if transport_failed else 0),
        )


def partition(identifiers: Iterable[str], batch_size: int) -> list[Batch]:
    """Split identifiers into batches of at most ``batch_size``.

    Repeated identifiers are dropped after their first occurrence.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    unique = list(dict.fromkeys(identifiers))
    return [
        Batch(tuple(unique[i : i + batch_size]))
        for i in range(0, len(unique), batch_size)
    ]


# ----------------------------------------------------------------------
# Per-identifier outcomes
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class Success:
    fragments: tuple[Any, ...]


@dataclass(frozen=True)
class Empty:
    pass


@dataclass(frozen=True)
class Failed:
    reason: str


Outcome = Union[Success, Empty, Failed]


# ----------------------------------------------------------------------
# Per-step transport results
# ----------------------------------------------------------------------


@dataclass(frozen=True)
class StepPayload:
    fragments: tuple[Any, ...]


@dataclass(frozen=True)
class StepNotFound:
    pass


@dataclass(frozen=True)
class StepRateLimited:
    retry_after: float


@dataclass(frozen=True)
class StepError:
    status: int
    detail: str


StepResult = Union[StepPayload, StepNotFound, StepRateLimited, StepError]


@dataclass
class FetchResult:
    """What a run produced: payloads, identifier failures and the run error."""

    results: dict[str, list[Any]]
    failures: dict[str, str]
    completed: int
    total: int
    error: Optional[BaseException] = None
    elapsed_s: float = 0.0
    pauses: int = 0
    paused_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error
