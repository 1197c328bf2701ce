"""Counts identifiers that reached a terminal outcome."""

from __future__ import annotations

import threading
from typing import Optional

from scripts.graphfetch.errors import CompletionOverflowError


class CompletionTracker:
    def __init__(self, total: int) -> None:
        if total < 0:
            raise ValueError(f"total must be >= 0, got {total}")
        self.total = total
        self._done = 0
        self._cancelled = False
        self._cond = threading.Condition()

    def mark_terminal(self, count: int = 1) -> None:
        with self._cond:
            if self._done + count > self.total:
                raise CompletionOverflowError(
                    f"{self._done + count} terminal outcomes for {self.total} identifiers"
                )
            self._done += count
            if self._done == self.total:
                self._cond.notify_all()

    def snapshot(self) -> tuple[int, int]:
        with self._cond:
            return self._done, self.total

    def wait_until_done(self, timeout: Optional[float] = None) -> bool:
        """Block until every identifier is terminal or the run is cancelled.

        Returns True when the wait ended for either reason and False when
        ``timeout`` elapsed first.
        """
        with self._cond:
            return self._cond.wait_for(
                lambda: self._done >= self.total or self._cancelled, timeout
            )

    def cancel(self) -> None:
        with self._cond:
            self._cancelled = True
            self._cond.notify_all()

    @property
    def done(self) -> bool:
        with self._cond:
            return self._done >= self.total

    @property
    def cancelled(self) -> bool:
        return self._cancelled
