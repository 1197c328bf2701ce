"""Shared fixtures and test doubles."""

from __future__ import annotations

import threading
import time
from typing import Callable, Optional
from urllib.parse import unquote

import pytest

from scripts.graphfetch.engine.base import BatchTransport
from scripts.graphfetch.engine.types import RequestDescriptor, StepPayload, StepResult
from scripts.graphfetch.resolver import ResourceResolver, user_resource

Responder = Callable[[int, str], Optional[StepResult]]


def identifier_of(descriptor: RequestDescriptor) -> str:
    # "/users/<id>/<resource>"
    return unquote(descriptor.url.split("/")[2])


def echo(call: int, identifier: str) -> StepResult:
    return StepPayload(({"user": identifier, "call": call},))


class FakeTransport(BatchTransport):
    """Scripted transport.

    ``responder(call_index, identifier)`` returns the step result for one
    identifier, None to leave the step out of the response, or raises to
    fail the whole batch call.
    """

    max_batch_size = 20

    def __init__(self, responder: Responder = echo, delay: float = 0.0) -> None:
        self.responder = responder
        self.delay = delay
        self.calls: list[list[str]] = []
        self._lock = threading.Lock()

    def submit_batch(self, requests: dict[str, RequestDescriptor]) -> dict[str, StepResult]:
        idents = {step: identifier_of(d) for step, d in requests.items()}
        with self._lock:
            call = len(self.calls)
            self.calls.append(list(idents.values()))
        if self.delay:
            time.sleep(self.delay)
        results: dict[str, StepResult] = {}
        for step, ident in idents.items():
            result = self.responder(call, ident)
            if result is not None:
                results[step] = result
        return results

    @property
    def submitted(self) -> list[str]:
        with self._lock:
            return [i for call in self.calls for i in call]


@pytest.fixture
def resolver() -> ResourceResolver:
    return ResourceResolver({"things": user_resource("things")})


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
