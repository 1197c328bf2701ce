"""Configuration via environment variables with cloud-native secret support.

Supports:
  - Environment variables (local dev)
  - .env files
  - AWS Secrets Manager / GCP Secret Manager references for the client secret
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Optional

from dotenv import load_dotenv

from scripts.graphfetch.engine.settings import EngineSettings
from scripts.graphfetch.secrets import resolve_secret

GRAPH_MAX_BATCH_SIZE = 20


@dataclass(frozen=True)
class GraphConfig:
    tenant_id: str
    client_id: str
    client_secret: str
    api_base_url: str = "https://graph.microsoft.com/v1.0"
    authority_url: str = "https://login.microsoftonline.com"
    scope: str = "https://graph.microsoft.com/.default"
    timeout_s: float = 30.0


@dataclass(frozen=True)
class FetchConfig:
    graph: Optional[GraphConfig] = None  # None = credentials supplied on the command line
    engine: EngineSettings = field(default_factory=EngineSettings)
    default_retry_after_s: float = 5.0


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_graph_config() -> Optional[GraphConfig]:
    """Graph credentials from the environment, or None if any is missing."""
    tenant_id = os.environ.get("GRAPH_TENANT_ID", "")
    client_id = os.environ.get("GRAPH_CLIENT_ID", "")
    secret_raw = os.environ.get("GRAPH_CLIENT_SECRET", "")
    if not (tenant_id and client_id and secret_raw):
        return None
    return GraphConfig(
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret=resolve_secret(secret_raw),
        api_base_url=os.environ.get("GRAPH_API_BASE_URL", "https://graph.microsoft.com/v1.0"),
        authority_url=os.environ.get("GRAPH_AUTHORITY_URL", "https://login.microsoftonline.com"),
        scope=os.environ.get("GRAPH_SCOPE", "https://graph.microsoft.com/.default"),
        timeout_s=_env_float("GRAPH_HTTP_TIMEOUT_S", 30.0),
    )


def load_config() -> FetchConfig:
    """Load configuration from environment variables.

    Graph credentials are optional here; the CLI can take them from a
    credentials file instead.
    """
    load_dotenv()

    batch_size = _env_int("FETCH_BATCH_SIZE", GRAPH_MAX_BATCH_SIZE)
    if not 1 <= batch_size <= GRAPH_MAX_BATCH_SIZE:
        raise ValueError(
            f"FETCH_BATCH_SIZE must be between 1 and {GRAPH_MAX_BATCH_SIZE}, got {batch_size}"
        )

    engine = EngineSettings(
        worker_count=_env_int("FETCH_WORKER_COUNT", 4),
        batch_size=batch_size,
        max_rate_limit_retries=_env_int("FETCH_MAX_RATE_LIMIT_RETRIES", 10),
        max_transport_retries=_env_int("FETCH_MAX_TRANSPORT_RETRIES", 0),
        transport_backoff_s=_env_float("FETCH_TRANSPORT_BACKOFF_S", 1.0),
        fail_on_step_error=_env_bool("FETCH_FAIL_ON_STEP_ERROR", True),
        progress_interval_s=_env_int("FETCH_PROGRESS_INTERVAL_MS", 100) / 1000.0,
    )

    return FetchConfig(
        graph=load_graph_config(),
        engine=engine,
        default_retry_after_s=_env_float("FETCH_DEFAULT_RETRY_AFTER_S", 5.0),
    )
