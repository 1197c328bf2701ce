"""Orchestrates one bulk fetch: partition, start workers, wait, collect."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Any, Callable, Iterable, Optional

from scripts.graphfetch.engine.aggregator import ResultAggregator
from scripts.graphfetch.engine.base import BatchTransport, Resolver
from scripts.graphfetch.engine.completion import CompletionTracker
from scripts.graphfetch.engine.governor import RateGovernor
from scripts.graphfetch.engine.progress import ProgressSnapshot, take_snapshot
from scripts.graphfetch.engine.settings import EngineSettings
from scripts.graphfetch.engine.types import FetchResult, partition
from scripts.graphfetch.engine.work_queue import WorkQueue
from scripts.graphfetch.engine.worker import BatchWorker
from scripts.graphfetch.errors import FetchCancelledError

logger = logging.getLogger("graphfetch.engine")

ProgressCallback = Callable[[ProgressSnapshot], None]


class _Run:
    """Shared state of a single run."""

    def __init__(self, total: int, capacity: int) -> None:
        self.governor = RateGovernor()
        self.tracker = CompletionTracker(total)
        self.aggregator = ResultAggregator()
        self.queue = WorkQueue(capacity)

    def fail(self, error: BaseException) -> None:
        self.governor.abort(error)
        self.tracker.cancel()
        self.queue.close()


class BulkFetchEngine:
    """Fetch one resource for many identifiers through batched calls.

    The resolver and transport are shared by every worker thread; both must
    be safe for concurrent use.
    """

    def __init__(
        self,
        resolver: Resolver,
        transport: BatchTransport,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        self.resolver = resolver
        self.transport = transport
        self.settings = settings or EngineSettings()
        self._lock = threading.Lock()
        self._current: Optional[_Run] = None

    def run(
        self,
        identifiers: Iterable[str],
        resource_path: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> FetchResult:
        settings = self.settings
        self.resolver.validate(resource_path)
        max_batch = getattr(self.transport, "max_batch_size", None)
        if max_batch is not None and settings.batch_size > max_batch:
            raise ValueError(
                f"batch_size {settings.batch_size} exceeds transport limit {max_batch}"
            )

        batches = partition(identifiers, settings.batch_size)
        total = sum(len(b) for b in batches)
        if total == 0:
            return FetchResult(results={}, failures={}, completed=0, total=0)

        run_id = uuid.uuid4().hex[:12]
        state = _Run(total, capacity=total)
        with self._lock:
            if self._current is not None:
                raise RuntimeError("engine is already running")
            self._current = state

        started = time.monotonic()
        threads: list[threading.Thread] = []
        try:
            for batch in batches:
                state.queue.push(batch)

            logger.info(
                "Fetching %s for %d identifiers in %d batches with %d workers",
                resource_path,
                total,
                len(batches),
                settings.worker_count,
                extra={"resource": resource_path, "records": total, "run_id": run_id},
            )
            for i in range(settings.worker_count):
                worker = BatchWorker(
                    name=f"worker-{i + 1}",
                    resource_path=resource_path,
                    queue=state.queue,
                    governor=state.governor,
                    aggregator=state.aggregator,
                    tracker=state.tracker,
                    resolver=self.resolver,
                    transport=self.transport,
                    settings=settings,
                    on_fatal=state.fail,
                )
                thread = threading.Thread(target=worker.run, name=worker.name, daemon=True)
                thread.start()
                threads.append(thread)

            while not state.tracker.wait_until_done(timeout=settings.progress_interval_s):
                if on_progress is not None:
                    on_progress(take_snapshot(state.tracker, state.governor))
        except KeyboardInterrupt:
            logger.warning("Interrupted, stopping workers", extra={"run_id": run_id})
            state.fail(FetchCancelledError("interrupted"))
        except BaseException as exc:
            state.fail(exc)
            self._join(threads, state)
            raise
        self._join(threads, state)

        if on_progress is not None:
            on_progress(take_snapshot(state.tracker, state.governor))

        results, failures = state.aggregator.snapshot()
        completed, _ = state.tracker.snapshot()
        elapsed = time.monotonic() - started
        error = state.governor.error
        if error is None and completed < total:
            error = FetchCancelledError(f"{total - completed} identifiers unfinished")
        log = logger.error if error else logger.info
        log(
            "Fetch of %s finished: %d/%d terminal, %d failed%s",
            resource_path,
            completed,
            total,
            len(failures),
            f" ({error})" if error else "",
            extra={
                "resource": resource_path,
                "records": completed,
                "duration_s": round(elapsed, 3),
                "run_id": run_id,
            },
        )
        return FetchResult(
            results=results,
            failures=failures,
            completed=completed,
            total=total,
            error=error,
            elapsed_s=elapsed,
            pauses=state.governor.pause_count,
            paused_s=state.governor.paused_seconds,
        )

    def cancel(self, reason: str = "cancelled") -> None:
        """Stop the current run from any thread. Partial results are kept."""
        with self._lock:
            state = self._current
        if state is not None:
            state.fail(FetchCancelledError(reason))

    def _join(self, threads: list[threading.Thread], state: _Run) -> None:
        state.queue.close()
        try:
            for thread in threads:
                thread.join()
        except KeyboardInterrupt:
            # stop waiting for in-flight batches; the daemon threads die with
            # the process and whatever they recorded so far is returned
            logger.warning("Interrupted again, not waiting for in-flight batches")
            state.fail(FetchCancelledError("interrupted"))
        finally:
            with self._lock:
                self._current = None


def run(
    identifiers: Iterable[str],
    resource_path: str,
    resolver: Resolver,
    transport: BatchTransport,
    worker_count: int = 4,
    batch_size: int = 20,
    on_progress: Optional[ProgressCallback] = None,
    **settings: Any,
) -> FetchResult:
    """One-shot helper around :class:`BulkFetchEngine`."""
    engine = BulkFetchEngine(
        resolver,
        transport,
        EngineSettings(worker_count=worker_count, batch_size=batch_size, **settings),
    )
    return engine.run(identifiers, resource_path, on_progress=on_progress)
