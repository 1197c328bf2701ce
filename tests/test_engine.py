"""End-to-end behaviour of the bulk fetch engine against scripted transports."""

from __future__ import annotations

import threading
import time

import pytest

from conftest import FakeTransport

from scripts.graphfetch.engine import BulkFetchEngine, EngineSettings, run
from scripts.graphfetch.engine.governor import GovernorState
from scripts.graphfetch.engine.types import (
    StepError,
    StepNotFound,
    StepPayload,
    StepRateLimited,
)
from scripts.graphfetch.errors import (
    AuthError,
    FetchCancelledError,
    StepFailedError,
    TransportError,
    UnknownResourceError,
)
from scripts.graphfetch.logging_config import configure_logging


def ids(n: int) -> list[str]:
    return [f"user-{i:04d}" for i in range(n)]


def test_example_scenario(resolver, transport):
    result = run(["a", "b", "c", "d", "e"], "things", resolver, transport, worker_count=2, batch_size=2)

    assert result.ok
    assert result.completed == 5
    assert result.total == 5
    assert sorted(result.results) == ["a", "b", "c", "d", "e"]
    assert result.results["c"][0]["user"] == "c"
    assert sorted(len(c) for c in transport.calls) == [1, 2, 2]


@pytest.mark.parametrize("n,batch_size,workers", [(1, 20, 4), (237, 20, 4), (50, 7, 3), (64, 1, 8)])
def test_every_identifier_terminates_once(resolver, transport, n, batch_size, workers):
    result = run(ids(n), "things", resolver, transport, worker_count=workers, batch_size=batch_size)

    assert result.ok
    assert result.completed == n
    assert len(result.results) == n
    assert sorted(transport.submitted) == sorted(ids(n))
    assert all(len(c) <= batch_size for c in transport.calls)


def test_duplicate_identifiers_are_fetched_once(resolver, transport):
    result = run(["a", "b", "a", "c", "b"], "things", resolver, transport, batch_size=2)

    assert result.ok
    assert result.total == 3
    assert sorted(transport.submitted) == ["a", "b", "c"]


def test_empty_input(resolver, transport):
    result = run([], "things", resolver, transport)

    assert result.ok
    assert result.results == {}
    assert transport.calls == []


def test_collection_fragments_are_kept_in_order(resolver):
    transport = FakeTransport(lambda call, ident: StepPayload(({"n": 1}, {"n": 2}, {"n": 3})))

    result = run(["a"], "things", resolver, transport)

    assert result.results["a"] == [{"n": 1}, {"n": 2}, {"n": 3}]


def test_not_found_is_empty_and_not_retried(resolver):
    def responder(call, ident):
        return StepNotFound() if ident == "X" else StepPayload(({"id": ident},))

    transport = FakeTransport(responder)

    result = run(["a", "X", "b"], "things", resolver, transport, worker_count=1, batch_size=3)

    assert result.ok
    assert result.completed == 3
    assert result.results["X"] == []
    assert transport.submitted.count("X") == 1


def test_partial_rate_limit_resubmits_only_pending(resolver):
    def responder(call, ident):
        if call == 0 and ident == "b":
            return StepRateLimited(0.05)
        return StepPayload(({"id": ident},))

    transport = FakeTransport(responder)

    result = run(["a", "b", "c"], "things", resolver, transport, worker_count=1, batch_size=3)

    assert result.ok
    assert transport.calls == [["a", "b", "c"], ["b"]]
    assert result.completed == 3
    assert result.results["b"] == [{"id": "b"}]
    assert result.pauses == 1


def test_rate_limit_pauses_once_for_all_workers(resolver):
    delay = 0.3

    def responder(call, ident):
        if call == 0:
            return StepRateLimited(delay)
        return StepPayload(({"id": ident},))

    transport = FakeTransport(responder, delay=0.01)

    result = run(ids(40), "things", resolver, transport, worker_count=4, batch_size=5)

    assert result.ok
    assert result.completed == 40
    assert result.pauses == 1
    assert delay * 0.9 <= result.paused_s < delay * 2
    assert result.elapsed_s < delay * 4


@pytest.mark.parametrize("attempt", range(5))
def test_throttled_batch_waits_out_the_pause(resolver, attempt):
    delay = 0.2
    sent_at: list[float] = []

    def responder(call, ident):
        sent_at.append(time.monotonic())
        if call == 0:
            return StepRateLimited(delay)
        return StepPayload(({"id": ident},))

    configure_logging("INFO")
    transport = FakeTransport(responder)
    engine = BulkFetchEngine(resolver, transport, EngineSettings(worker_count=4, batch_size=1))

    result = engine.run(["a"], "things")

    assert result.ok
    assert transport.calls == [["a"], ["a"]]
    # idle workers must not pick up the resubmission before the pause ends
    assert sent_at[1] - sent_at[0] >= delay * 0.95
    assert result.pauses == 1


def test_workers_hold_off_while_paused(resolver):
    delay = 0.3
    sent_at: dict[str, list[float]] = {}
    lock = threading.Lock()

    def responder(call, ident):
        with lock:
            sent_at.setdefault(ident, []).append(time.monotonic())
        if call == 0:
            return StepRateLimited(delay)
        return StepPayload(({"id": ident},))

    transport = FakeTransport(responder)
    engine = BulkFetchEngine(resolver, transport, EngineSettings(worker_count=3, batch_size=1))

    result = engine.run(["a"] + ids(2), "things")

    assert result.ok
    assert result.pauses == 1
    throttled = transport.calls[0][0]
    first, second = sent_at[throttled]
    assert second - first >= delay * 0.95


def test_retry_exhaustion_marks_identifiers_failed(resolver):
    transport = FakeTransport(lambda call, ident: StepRateLimited(0.0))

    result = run(
        ["a", "b"], "things", resolver, transport,
        worker_count=1, batch_size=2, max_rate_limit_retries=2,
    )

    assert result.ok
    assert result.completed == 2
    assert result.results == {}
    assert set(result.failures) == {"a", "b"}
    assert "rate limit retries exhausted" in result.failures["a"]
    assert len(transport.calls) == 3


def test_missing_step_is_resubmitted(resolver):
    def responder(call, ident):
        if call == 0 and ident == "b":
            return None
        return StepPayload(({"id": ident},))

    transport = FakeTransport(responder)

    result = run(["a", "b"], "things", resolver, transport, worker_count=1, batch_size=2)

    assert result.ok
    assert transport.calls == [["a", "b"], ["b"]]
    assert result.pauses == 0


def test_fatal_transport_error_keeps_completed_results(resolver):
    def responder(call, ident):
        if call == 2:
            raise TransportError("connection reset")
        return StepPayload(({"id": ident},))

    transport = FakeTransport(responder)

    result = run(ids(10), "things", resolver, transport, worker_count=1, batch_size=2)

    assert isinstance(result.error, TransportError)
    assert result.completed == 4
    assert sorted(result.results) == ids(10)[:4]
    with pytest.raises(TransportError):
        result.raise_for_error()


def test_transport_error_retried_when_configured(resolver):
    def responder(call, ident):
        if call == 0:
            raise TransportError("timeout")
        return StepPayload(({"id": ident},))

    transport = FakeTransport(responder)

    result = run(
        ["a", "b"], "things", resolver, transport,
        worker_count=1, batch_size=2, max_transport_retries=1, transport_backoff_s=0.01,
    )

    assert result.ok
    assert transport.calls == [["a", "b"], ["a", "b"]]


def test_auth_error_aborts(resolver):
    def responder(call, ident):
        raise AuthError("token expired")

    result = run(ids(6), "things", resolver, FakeTransport(responder), worker_count=2, batch_size=2)

    assert isinstance(result.error, AuthError)
    assert result.results == {}


def test_step_error_is_fatal_by_default(resolver):
    def responder(call, ident):
        if ident == "bad":
            return StepError(500, "InternalServerError: boom")
        return StepPayload(({"id": ident},))

    result = run(["a", "bad"], "things", resolver, FakeTransport(responder), worker_count=1, batch_size=2)

    assert isinstance(result.error, StepFailedError)
    assert result.error.identifier == "bad"
    assert list(result.results) == ["a"]


def test_step_error_recorded_when_not_fatal(resolver):
    def responder(call, ident):
        if ident == "bad":
            return StepError(403, "Authorization_RequestDenied: nope")
        return StepPayload(({"id": ident},))

    result = run(
        ["a", "bad"], "things", resolver, FakeTransport(responder),
        worker_count=1, batch_size=2, fail_on_step_error=False,
    )

    assert result.ok
    assert result.failures == {"bad": "HTTP 403: Authorization_RequestDenied: nope"}
    assert result.completed == 2


def test_resolution_failure_does_not_block_batch(resolver, transport):
    result = run(["a", "x/y", " ", "b"], "things", resolver, transport, worker_count=1, batch_size=4)

    assert result.ok
    assert result.completed == 4
    assert set(result.failures) == {"x/y", " "}
    assert transport.calls == [["a", "b"]]


def test_unknown_resource_rejected_before_any_call(resolver, transport):
    with pytest.raises(UnknownResourceError):
        run(["a"], "nope", resolver, transport)
    assert transport.calls == []


def test_batch_size_above_transport_limit(resolver, transport):
    with pytest.raises(ValueError):
        run(["a"], "things", resolver, transport, batch_size=21)


def test_progress_callback_sees_final_state(resolver):
    snapshots = []
    transport = FakeTransport(delay=0.02)
    engine = BulkFetchEngine(
        resolver, transport, EngineSettings(worker_count=2, batch_size=2, progress_interval_s=0.01)
    )

    result = engine.run(ids(20), "things", on_progress=snapshots.append)

    assert result.ok
    assert len(snapshots) >= 2
    assert snapshots[-1].done == snapshots[-1].total == 20
    assert snapshots[-1].state is GovernorState.NORMAL
    dones = [s.done for s in snapshots]
    assert dones == sorted(dones)


def test_cancel_returns_partial_results(resolver):
    transport = FakeTransport(delay=0.05)
    engine = BulkFetchEngine(
        resolver, transport, EngineSettings(worker_count=1, batch_size=5, progress_interval_s=0.01)
    )

    def on_progress(snapshot):
        if snapshot.done >= 5:
            engine.cancel("stop requested")

    result = engine.run(ids(100), "things", on_progress=on_progress)

    assert isinstance(result.error, FetchCancelledError)
    assert 5 <= result.completed < 100
    assert len(result.results) == result.completed


def test_keyboard_interrupt_returns_partial_results(resolver):
    transport = FakeTransport(delay=0.05)
    engine = BulkFetchEngine(
        resolver, transport, EngineSettings(worker_count=1, batch_size=5, progress_interval_s=0.01)
    )
    interrupted = []

    def on_progress(snapshot):
        if snapshot.done >= 5 and not interrupted:
            interrupted.append(snapshot.done)
            raise KeyboardInterrupt

    result = engine.run(ids(100), "things", on_progress=on_progress)

    assert isinstance(result.error, FetchCancelledError)
    assert 5 <= result.completed < 100
    assert len(result.results) == result.completed
    assert transport.calls

    # the engine can be reused after an interrupted run
    assert engine.run(["a"], "things").ok
