"""Batch worker: resolve, submit one ``$batch`` call, demultiplex the steps."""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from scripts.graphfetch.engine.aggregator import ResultAggregator
from scripts.graphfetch.engine.base import BatchTransport, Resolver
from scripts.graphfetch.engine.completion import CompletionTracker
from scripts.graphfetch.engine.governor import RateGovernor
from scripts.graphfetch.engine.settings import EngineSettings
from scripts.graphfetch.engine.types import (
    Batch,
    Empty,
    Failed,
    Outcome,
    RequestDescriptor,
    StepError,
    StepNotFound,
    StepPayload,
    StepRateLimited,
    Success,
)
from scripts.graphfetch.engine.work_queue import WorkQueue
from scripts.graphfetch.errors import (
    AuthError,
    QueueClosedError,
    ResolutionError,
    StepFailedError,
    TransportError,
)

logger = logging.getLogger("graphfetch.worker")

MAX_TRANSPORT_BACKOFF_S = 60.0


class BatchWorker:
    def __init__(
        self,
        name: str,
        resource_path: str,
        queue: WorkQueue,
        governor: RateGovernor,
        aggregator: ResultAggregator,
        tracker: CompletionTracker,
        resolver: Resolver,
        transport: BatchTransport,
        settings: EngineSettings,
        on_fatal: Callable[[BaseException], None],
    ) -> None:
        self.name = name
        self._resource = resource_path
        self._queue = queue
        self._governor = governor
        self._aggregator = aggregator
        self._tracker = tracker
        self._resolver = resolver
        self._transport = transport
        self._settings = settings
        self._on_fatal = on_fatal

    def run(self) -> None:
        """Drain the queue until it is closed or the run is aborted."""
        try:
            while True:
                batch = self._queue.pop()
                if batch is None:
                    return
                if not self._governor.wait_until_clear():
                    return
                self._process(batch)
        except Exception as exc:
            logger.exception("Worker %s crashed", self.name, extra={"worker": self.name})
            self._on_fatal(exc)

    # ------------------------------------------------------------------
    # One batch
    # ------------------------------------------------------------------

    def _process(self, batch: Batch) -> None:
        steps: dict[str, str] = {}
        requests: dict[str, RequestDescriptor] = {}
        for identifier in batch.identifiers:
            try:
                descriptor = self._resolver.resolve(self._resource, identifier)
            except ResolutionError as exc:
                logger.warning("Skipping %s: %s", identifier, exc.reason)
                self._finish(identifier, Failed(str(exc)))
                continue
            step = str(len(steps) + 1)
            steps[step] = identifier
            requests[step] = descriptor
        if not requests:
            return

        started = time.monotonic()
        try:
            responses = self._transport.submit_batch(requests)
        except AuthError as exc:
            logger.error("Batch rejected: %s", exc, extra={"worker": self.name})
            self._on_fatal(exc)
            return
        except TransportError as exc:
            self._retry_after_transport_error(batch, list(steps.values()), exc)
            return
        logger.debug(
            "Batch of %d sent",
            len(requests),
            extra={
                "worker": self.name,
                "batch_size": len(requests),
                "attempt": batch.attempt,
                "duration_s": round(time.monotonic() - started, 3),
            },
        )

        pending: list[str] = []
        retry_after: Optional[float] = None
        fatal: Optional[StepFailedError] = None
        for step, identifier in steps.items():
            result = responses.get(step)
            if isinstance(result, StepPayload):
                self._finish(identifier, Success(tuple(result.fragments)))
            elif isinstance(result, StepNotFound):
                self._finish(identifier, Empty())
            elif isinstance(result, StepRateLimited):
                pending.append(identifier)
                retry_after = max(retry_after or 0.0, result.retry_after)
            elif isinstance(result, StepError):
                if self._settings.fail_on_step_error:
                    if fatal is None:
                        fatal = StepFailedError(identifier, result.status, result.detail)
                else:
                    self._finish(identifier, Failed(f"HTTP {result.status}: {result.detail}"))
            else:
                # no response for this step; resubmit it with the throttled ones
                pending.append(identifier)

        if fatal is not None:
            logger.error("%s", fatal, extra={"worker": self.name})
            self._on_fatal(fatal)
            return
        if pending:
            self._requeue(batch, pending, retry_after)

    def _requeue(self, batch: Batch, pending: list[str], retry_after: Optional[float]) -> None:
        follow_up = batch.retry(pending, rate_limited=True)
        if follow_up.attempt > self._settings.max_rate_limit_retries:
            reason = f"rate limit retries exhausted after {follow_up.attempt} attempts"
            logger.warning(
                "Giving up on %d identifiers: %s",
                len(pending),
                reason,
                extra={"worker": self.name, "identifiers": len(pending)},
            )
            for identifier in pending:
                self._finish(identifier, Failed(reason))
            return

        # publish the pause before the follow-up is visible to idle workers
        claimed = retry_after is not None and self._governor.claim_pause(retry_after)
        try:
            self._queue.push(follow_up)
        except QueueClosedError:
            logger.debug("Queue closed, dropping retry of %d identifiers", len(pending))
            return
        logger.info(
            "Requeued %d of %d identifiers",
            len(pending),
            len(batch),
            extra={
                "worker": self.name,
                "identifiers": len(pending),
                "attempt": follow_up.attempt,
                "retry_after": retry_after,
            },
        )
        if claimed:
            self._governor.hold()

    def _retry_after_transport_error(
        self, batch: Batch, identifiers: list[str], exc: TransportError
    ) -> None:
        if batch.transport_attempt >= self._settings.max_transport_retries:
            logger.error("Batch send failed: %s", exc, extra={"worker": self.name})
            self._on_fatal(exc)
            return
        delay = min(
            self._settings.transport_backoff_s * (2 ** batch.transport_attempt),
            MAX_TRANSPORT_BACKOFF_S,
        )
        logger.warning(
            "Batch send failed, retrying in %.1fs (attempt %d): %s",
            delay,
            batch.transport_attempt + 1,
            exc,
            extra={"worker": self.name, "attempt": batch.transport_attempt + 1},
        )
        if not self._governor.sleep(delay):
            return
        try:
            self._queue.push(batch.retry(identifiers, transport_failed=True))
        except QueueClosedError:
            return

    def _finish(self, identifier: str, outcome: Outcome) -> None:
        self._aggregator.record(identifier, outcome)
        self._tracker.mark_terminal()
