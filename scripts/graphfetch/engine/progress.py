"""Read-only progress view over the completion tracker and the governor."""

from __future__ import annotations

import math
import sys
from dataclasses import dataclass
from typing import Optional, TextIO

from scripts.graphfetch.engine.completion import CompletionTracker
from scripts.graphfetch.engine.governor import GovernorState, RateGovernor


@dataclass(frozen=True)
class ProgressSnapshot:
    done: int
    total: int
    state: GovernorState
    retry_after: float = 0.0
    remaining_s: float = 0.0

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 100
        return self.done * 100 // self.total


def take_snapshot(tracker: CompletionTracker, governor: RateGovernor) -> ProgressSnapshot:
    done, total = tracker.snapshot()
    gov = governor.snapshot()
    return ProgressSnapshot(
        done=done,
        total=total,
        state=gov.state,
        retry_after=gov.retry_after,
        remaining_s=gov.remaining_s,
    )


def format_progress(snapshot: ProgressSnapshot) -> str:
    line = f" {snapshot.done}/{snapshot.total} ({snapshot.percent}%)"
    if snapshot.state in (GovernorState.ANNOUNCING, GovernorState.PAUSED):
        wait = int(math.ceil(snapshot.remaining_s))
        line += f" PAUSED: Too many requests, please wait for {wait} seconds..."
    elif snapshot.state is GovernorState.ABORTED:
        line += " ABORTED"
    return line


class ProgressPrinter:
    """Progress callback that keeps rewriting a single terminal line."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream or sys.stderr
        self._width = 0

    def __call__(self, snapshot: ProgressSnapshot) -> None:
        line = format_progress(snapshot)
        # pad over leftovers of a longer previous line
        padded = line.ljust(self._width)
        self._width = len(line)
        self.stream.write("\r" + padded)
        self.stream.flush()

    def finish(self) -> None:
        if self._width:
            self.stream.write("\n")
            self.stream.flush()
            self._width = 0
