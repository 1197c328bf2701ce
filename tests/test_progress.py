from __future__ import annotations

import io

from scripts.graphfetch.engine.completion import CompletionTracker
from scripts.graphfetch.engine.governor import GovernorState, RateGovernor
from scripts.graphfetch.engine.progress import (
    ProgressPrinter,
    ProgressSnapshot,
    format_progress,
    take_snapshot,
)


def test_format_normal():
    snap = ProgressSnapshot(done=40, total=100, state=GovernorState.NORMAL)

    assert format_progress(snap) == " 40/100 (40%)"


def test_format_paused_rounds_wait_up():
    snap = ProgressSnapshot(
        done=3, total=7, state=GovernorState.PAUSED, retry_after=10, remaining_s=4.2
    )

    assert format_progress(snap) == (
        " 3/7 (42%) PAUSED: Too many requests, please wait for 5 seconds..."
    )


def test_format_aborted():
    snap = ProgressSnapshot(done=1, total=2, state=GovernorState.ABORTED)

    assert format_progress(snap).endswith("ABORTED")


def test_percent_of_empty_run():
    assert ProgressSnapshot(done=0, total=0, state=GovernorState.NORMAL).percent == 100


def test_take_snapshot_reads_both_components():
    tracker = CompletionTracker(4)
    tracker.mark_terminal()
    governor = RateGovernor()
    governor.claim_pause(3)

    snap = take_snapshot(tracker, governor)

    assert (snap.done, snap.total) == (1, 4)
    assert snap.state is GovernorState.ANNOUNCING
    assert snap.remaining_s == 3


def test_printer_rewrites_one_line():
    out = io.StringIO()
    printer = ProgressPrinter(out)

    printer(ProgressSnapshot(done=1, total=10, state=GovernorState.PAUSED, remaining_s=2))
    printer(ProgressSnapshot(done=10, total=10, state=GovernorState.NORMAL))
    printer.finish()

    text = out.getvalue()
    assert text.count("\r") == 2
    assert text.endswith("\n")
    last = text.split("\r")[-1]
    assert last.startswith(" 10/10 (100%)")
    assert "PAUSED" not in last
