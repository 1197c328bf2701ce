"""Concurrent batched fetch engine."""

from scripts.graphfetch.engine.runner import BulkFetchEngine, run
from scripts.graphfetch.engine.settings import EngineSettings
from scripts.graphfetch.engine.types import (
    Batch,
    Empty,
    Failed,
    FetchResult,
    RequestDescriptor,
    StepError,
    StepNotFound,
    StepPayload,
    StepRateLimited,
    Success,
)

__all__ = [
    "Batch",
    "BulkFetchEngine",
    "Empty",
    "EngineSettings",
    "Failed",
    "FetchResult",
    "RequestDescriptor",
    "StepError",
    "StepNotFound",
    "StepPayload",
    "StepRateLimited",
    "Success",
    "run",
]
