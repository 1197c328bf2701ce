"""Bounded multi-producer / multi-consumer queue of pending batches."""

from __future__ import annotations

import threading
from collections import deque
from typing import Optional

from scripts.graphfetch.engine.types import Batch
from scripts.graphfetch.errors import QueueClosedError


class WorkQueue:
    """Holds batches waiting to be submitted.

    Capacity should be the number of distinct identifiers in the run: pending
    batches never share an identifier and are never empty, so a queue of that
    size can absorb every retry without blocking a producer.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self.capacity = capacity
        self._items: deque[Batch] = deque()
        self._closed = False
        self._cond = threading.Condition()

    def push(self, batch: Batch) -> None:
        with self._cond:
            while len(self._items) >= self.capacity and not self._closed:
                self._cond.wait()
            if self._closed:
                raise QueueClosedError("work queue is closed")
            self._items.append(batch)
            self._cond.notify_all()

    def pop(self) -> Optional[Batch]:
        """Block until a batch is available. Returns None once the queue is closed."""
        with self._cond:
            while not self._items and not self._closed:
                self._cond.wait()
            if self._closed:
                return None
            batch = self._items.popleft()
            self._cond.notify_all()
            return batch

    def close(self) -> None:
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)
