"""Global rate-limit pause shared by every batch worker.

The first worker to see a 429 claims the pause and becomes the waiter. It
announces the delay, sleeps once, and releases everyone else. Workers that
see a 429 while a pause is already in effect only requeue their batch.

    NORMAL --claim_pause(d)--> ANNOUNCING(d) --hold()--> PAUSED(d) --d elapsed--> NORMAL
    any state --abort(err)--> ABORTED
"""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger("graphfetch.governor")


class GovernorState(enum.Enum):
    NORMAL = "normal"
    ANNOUNCING = "announcing"
    PAUSED = "paused"
    ABORTED = "aborted"


@dataclass(frozen=True)
class GovernorSnapshot:
    state: GovernorState
    retry_after: float
    remaining_s: float
    error: Optional[BaseException] = None


class RateGovernor:
    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._cond = threading.Condition()
        self._state = GovernorState.NORMAL
        self._retry_after = 0.0
        self._deadline = 0.0
        self._error: Optional[BaseException] = None
        self.pause_count = 0
        self.paused_seconds = 0.0

    def claim_pause(self, retry_after: float) -> bool:
        """Move NORMAL -> ANNOUNCING. True means the caller must call hold()."""
        with self._cond:
            if self._state is not GovernorState.NORMAL:
                return False
            self._state = GovernorState.ANNOUNCING
            self._retry_after = max(0.0, float(retry_after))
            self._cond.notify_all()
            return True

    def hold(self) -> None:
        """Sleep out the announced delay, then release blocked workers."""
        with self._cond:
            if self._state is not GovernorState.ANNOUNCING:
                return
            self._state = GovernorState.PAUSED
            started = self._clock()
            self._deadline = started + self._retry_after
            self.pause_count += 1
            logger.warning(
                "Rate limited, pausing all workers for %.1fs",
                self._retry_after,
                extra={"retry_after": self._retry_after},
            )
            self._cond.notify_all()
            while self._state is GovernorState.PAUSED:
                remaining = self._deadline - self._clock()
                if remaining <= 0:
                    break
                self._cond.wait(remaining)
            self.paused_seconds += self._clock() - started
            if self._state is GovernorState.PAUSED:
                self._state = GovernorState.NORMAL
                self._retry_after = 0.0
                logger.info("Rate limit pause over, resuming")
            self._cond.notify_all()

    def wait_until_clear(self) -> bool:
        """Block while a pause is announced or in effect. False if aborted."""
        with self._cond:
            while self._state in (GovernorState.ANNOUNCING, GovernorState.PAUSED):
                self._cond.wait()
            return self._state is GovernorState.NORMAL

    def sleep(self, seconds: float) -> bool:
        """Worker-local backoff that ends early on abort. False if aborted."""
        with self._cond:
            self._cond.wait_for(lambda: self._state is GovernorState.ABORTED, seconds)
            return self._state is not GovernorState.ABORTED

    def abort(self, error: BaseException) -> None:
        with self._cond:
            if self._state is GovernorState.ABORTED:
                return
            self._state = GovernorState.ABORTED
            self._error = error
            self._cond.notify_all()

    @property
    def state(self) -> GovernorState:
        return self._state

    @property
    def aborted(self) -> bool:
        return self._state is GovernorState.ABORTED

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def snapshot(self) -> GovernorSnapshot:
        with self._cond:
            remaining = 0.0
            if self._state is GovernorState.PAUSED:
                remaining = max(0.0, self._deadline - self._clock())
            elif self._state is GovernorState.ANNOUNCING:
                remaining = self._retry_after
            return GovernorSnapshot(
                state=self._state,
                retry_after=self._retry_after,
                remaining_s=remaining,
                error=self._error,
            )
