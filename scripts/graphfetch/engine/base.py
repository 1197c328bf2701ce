"""Abstract collaborators the engine depends on."""

from __future__ import annotations

from abc import ABC, abstractmethod

from scripts.graphfetch.engine.types import RequestDescriptor, StepResult


class Resolver(ABC):
    """Turns a resource path and an identifier into an executable request."""

    @abstractmethod
    def validate(self, resource_path: str) -> None:
        """Raise UnknownResourceError if the path cannot be resolved at all."""

    @abstractmethod
    def resolve(self, resource_path: str, identifier: str) -> RequestDescriptor:
        """Build the request for one identifier. Raises ResolutionError."""


class BatchTransport(ABC):
    """Executes a set of tagged requests as one batch call.

    Implementations are shared by every worker and must be safe for
    concurrent use.
    """

    max_batch_size: int = 20

    @abstractmethod
    def submit_batch(
        self, requests: dict[str, RequestDescriptor]
    ) -> dict[str, StepResult]:
        """Return one StepResult per step id.

        Raises AuthError when credentials are rejected and TransportError when
        the call as a whole failed.
        """
