"""Microsoft Graph JSON ``$batch`` transport."""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from scripts.graphfetch.auth import TokenProvider
from scripts.graphfetch.engine.base import BatchTransport
from scripts.graphfetch.engine.types import (
    RequestDescriptor,
    StepError,
    StepNotFound,
    StepPayload,
    StepRateLimited,
    StepResult,
)
from scripts.graphfetch.errors import AuthError, TransportError

logger = logging.getLogger("graphfetch.transport")


def parse_retry_after(headers: Optional[dict[str, Any]], default: float) -> float:
    """Seconds from a Retry-After header, looked up case-insensitively."""
    for key, value in (headers or {}).items():
        if key.lower() == "retry-after":
            try:
                return max(float(value), 0.0)
            except (TypeError, ValueError):
                return default
    return default


def error_detail(body: Any) -> str:
    """Render an OData error body as ``code: message``."""
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict):
            code = err.get("code", "")
            message = err.get("message", "")
            return f"{code}: {message}" if code else str(message)
    return str(body)[:200] if body else ""


def step_result(response: dict[str, Any], default_retry_after: float) -> StepResult:
    """Classify one entry of the ``responses`` array."""
    status = int(response.get("status", 0))
    body = response.get("body")
    if 200 <= status < 300:
        if isinstance(body, dict) and isinstance(body.get("value"), list):
            if body.get("@odata.nextLink"):
                logger.warning(
                    "Step %s has more pages; only the first %d items are kept",
                    response.get("id"),
                    len(body["value"]),
                )
            return StepPayload(tuple(body["value"]))
        if body is None or status == 204:
            return StepPayload(())
        return StepPayload((body,))
    if status == 404:
        return StepNotFound()
    if status == 429:
        return StepRateLimited(parse_retry_after(response.get("headers"), default_retry_after))
    return StepError(status, error_detail(body))


class GraphBatchTransport(BatchTransport):
    """Posts up to 20 requests per call to ``<base>/$batch``.

    The session and token provider are shared across workers; requests'
    Session is used read-only after construction.
    """

    max_batch_size = 20

    def __init__(
        self,
        token_provider: TokenProvider,
        api_base_url: str = "https://graph.microsoft.com/v1.0",
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        default_retry_after: float = 5.0,
    ) -> None:
        self._tokens = token_provider
        self._url = f"{api_base_url.rstrip('/')}/$batch"
        self._session = session or requests.Session()
        self._timeout = timeout
        self._default_retry_after = default_retry_after

    def submit_batch(
        self, requests_by_step: dict[str, RequestDescriptor]
    ) -> dict[str, StepResult]:
        if len(requests_by_step) > self.max_batch_size:
            raise ValueError(
                f"{len(requests_by_step)} requests exceed the batch limit of {self.max_batch_size}"
            )
        payload = {"requests": [self._encode(step, d) for step, d in requests_by_step.items()]}
        headers = {
            "Authorization": f"Bearer {self._tokens.get_token()}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        try:
            resp = self._session.post(self._url, json=payload, headers=headers, timeout=self._timeout)
        except requests.RequestException as exc:
            raise TransportError(f"Batch request failed: {exc}") from exc

        if resp.status_code in (401, 403):
            self._tokens.invalidate()
            raise AuthError(f"Batch request rejected (HTTP {resp.status_code}): {resp.text[:200]}")
        if resp.status_code == 429:
            delay = parse_retry_after(dict(resp.headers), self._default_retry_after)
            logger.warning("Whole batch throttled, retry after %.0fs", delay, extra={"retry_after": delay})
            return {step: StepRateLimited(delay) for step in requests_by_step}
        if resp.status_code != 200:
            raise TransportError(
                f"Batch request failed (HTTP {resp.status_code}): {resp.text[:200]}",
                status=resp.status_code,
            )

        try:
            responses = resp.json().get("responses", [])
        except (ValueError, AttributeError) as exc:
            raise TransportError(f"Malformed batch response: {exc}", status=resp.status_code) from exc
        if not isinstance(responses, list) or not all(isinstance(item, dict) for item in responses):
            raise TransportError(
                "Malformed batch response: 'responses' is not a list of objects",
                status=resp.status_code,
            )

        results: dict[str, StepResult] = {}
        for item in responses:
            step = str(item.get("id", ""))
            if step in requests_by_step:
                try:
                    results[step] = step_result(item, self._default_retry_after)
                except (TypeError, ValueError) as exc:
                    raise TransportError(
                        f"Malformed batch response for step {step}: {exc}",
                        status=resp.status_code,
                    ) from exc
        return results

    @staticmethod
    def _encode(step: str, descriptor: RequestDescriptor) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "id": step,
            "method": descriptor.method,
            "url": descriptor.url,
        }
        if descriptor.headers:
            entry["headers"] = dict(descriptor.headers)
        if descriptor.body is not None:
            entry["body"] = descriptor.body
            entry.setdefault("headers", {}).setdefault("Content-Type", "application/json")
        return entry
