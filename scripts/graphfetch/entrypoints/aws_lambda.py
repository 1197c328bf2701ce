"""AWS Lambda handler for bulk fetches.

Each invocation fetches one resource for the identifiers in the event.
Credentials come from the environment (GRAPH_* variables, with the client
secret usually an ``aws-secret://`` reference).

Event format:
  {"resource": "authentication/methods", "identifiers": ["id1", "id2"]}
  {"resource": "memberOf", "identifiers": [...], "workers": 8, "batch_size": 10}
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
import sys

# Ensure the project root is on sys.path for Lambda packaging
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "..", ".."))

from scripts.graphfetch.auth import TokenProvider
from scripts.graphfetch.config import load_config
from scripts.graphfetch.engine import BulkFetchEngine
from scripts.graphfetch.errors import GraphFetchError
from scripts.graphfetch.logging_config import configure_logging
from scripts.graphfetch.resolver import default_resolver
from scripts.graphfetch.transport import GraphBatchTransport

logger = logging.getLogger("graphfetch.lambda")


def _bad_request(message: str) -> dict:
    return {"statusCode": 400, "body": json.dumps({"error": message})}


def handler(event: dict, context) -> dict:
    """Lambda entry point."""
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))

    resource = event.get("resource", "")
    identifiers = event.get("identifiers")
    if not resource:
        return _bad_request("Missing 'resource' in event")
    if not isinstance(identifiers, list) or not all(isinstance(i, str) for i in identifiers):
        return _bad_request("'identifiers' must be a list of strings")

    logger.info(
        "Lambda invoked for resource=%s",
        resource,
        extra={"resource": resource, "records": len(identifiers)},
    )

    config = load_config()
    if config.graph is None:
        return {"statusCode": 500, "body": json.dumps({"error": "Graph credentials not configured"})}

    settings = config.engine
    try:
        if "workers" in event:
            settings = dataclasses.replace(settings, worker_count=int(event["workers"]))
        if "batch_size" in event:
            settings = dataclasses.replace(settings, batch_size=int(event["batch_size"]))
    except (TypeError, ValueError) as exc:
        return _bad_request(str(exc))

    resolver = default_resolver()
    try:
        resolver.validate(resource)
    except GraphFetchError as exc:
        return _bad_request(str(exc))

    tokens = TokenProvider.from_config(config.graph)
    transport = GraphBatchTransport(
        tokens,
        api_base_url=config.graph.api_base_url,
        timeout=config.graph.timeout_s,
        default_retry_after=config.default_retry_after_s,
    )
    try:
        result = BulkFetchEngine(resolver, transport, settings).run(identifiers, resource)
    except ValueError as exc:
        return _bad_request(str(exc))

    body = {
        "resource": resource,
        "results": result.results,
        "failures": result.failures,
        "completed": result.completed,
        "total": result.total,
    }
    if result.error is not None:
        logger.error("Fetch failed for %s: %s", resource, result.error)
        body["error"] = str(result.error)
        return {"statusCode": 500, "body": json.dumps(body, default=str)}
    return {"statusCode": 200, "body": json.dumps(body, default=str)}
