"""Single-owner store of per-identifier outcomes."""

from __future__ import annotations

import threading
from typing import Any

from scripts.graphfetch.engine.types import Empty, Failed, Outcome, Success
from scripts.graphfetch.errors import DuplicateOutcomeError


class ResultAggregator:
    """Merges outcomes into the result map under one lock.

    Successful identifiers map to their payload fragments, not-found ones to
    an empty list. Failures are kept apart so the result map only ever holds
    data that came back from the API.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._results: dict[str, list[Any]] = {}
        self._failures: dict[str, str] = {}
        self._terminal: set[str] = set()

    def record(self, identifier: str, outcome: Outcome) -> None:
        with self._lock:
            if identifier in self._terminal:
                raise DuplicateOutcomeError(
                    f"identifier {identifier!r} already has a terminal outcome"
                )
            if isinstance(outcome, Success):
                self._results.setdefault(identifier, []).extend(outcome.fragments)
            elif isinstance(outcome, Empty):
                self._results.setdefault(identifier, [])
            elif isinstance(outcome, Failed):
                self._failures[identifier] = outcome.reason
            else:
                raise TypeError(f"unsupported outcome {outcome!r}")
            self._terminal.add(identifier)

    def is_terminal(self, identifier: str) -> bool:
        with self._lock:
            return identifier in self._terminal

    def snapshot(self) -> tuple[dict[str, list[Any]], dict[str, str]]:
        with self._lock:
            results = {k: list(v) for k, v in self._results.items()}
            return results, dict(self._failures)

    def __len__(self) -> int:
        with self._lock:
            return len(self._terminal)
