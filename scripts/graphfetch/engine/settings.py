"""Tunables for one engine run."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class EngineSettings:
    worker_count: int = 4
    batch_size: int = 20
    max_rate_limit_retries: int = 10
    max_transport_retries: int = 0  # 0 = a failed batch call aborts the run
    transport_backoff_s: float = 1.0
    fail_on_step_error: bool = True
    progress_interval_s: float = 0.1

    def __post_init__(self) -> None:
        if self.worker_count < 1:
            raise ValueError(f"worker_count must be >= 1, got {self.worker_count}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.max_rate_limit_retries < 0:
            raise ValueError("max_rate_limit_retries must be >= 0")
        if self.max_transport_retries < 0:
            raise ValueError("max_transport_retries must be >= 0")
        if self.progress_interval_s <= 0:
            raise ValueError("progress_interval_s must be > 0")
