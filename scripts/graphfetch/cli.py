"""CLI entry point: fetch, auth, resources."""

from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import os
import sys
import time
from typing import Any, Optional

from scripts.graphfetch.auth import Credentials, TokenProvider, load_credentials_file
from scripts.graphfetch.config import GRAPH_MAX_BATCH_SIZE, FetchConfig, load_config
from scripts.graphfetch.engine import BulkFetchEngine
from scripts.graphfetch.engine.progress import ProgressPrinter
from scripts.graphfetch.errors import AuthError, UnknownResourceError
from scripts.graphfetch.logging_config import configure_logging
from scripts.graphfetch.resolver import default_resolver
from scripts.graphfetch.secrets import resolve_secret
from scripts.graphfetch.transport import GraphBatchTransport

logger = logging.getLogger("graphfetch.cli")


def read_identifiers(path: str) -> list[str]:
    """Read identifiers from a JSON array of ``{"id": ...}`` objects.

    Bare strings are accepted as identifiers too.
    """
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except OSError as exc:
        raise ValueError(f"Failed to read the input file: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ValueError(f"Failed to parse input JSON: {exc}") from exc
    if not isinstance(data, list):
        raise ValueError("Failed to parse input JSON: expected an array")

    ids: list[str] = []
    for pos, entry in enumerate(data):
        if isinstance(entry, str):
            ids.append(entry)
        elif isinstance(entry, dict) and isinstance(entry.get("id"), str):
            ids.append(entry["id"])
        else:
            raise ValueError(f"Entry {pos} of the input file has no string 'id'")
    return ids


def dump_file(result: Any, path: str, pretty: bool = True) -> None:
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(result, fh, indent=1 if pretty else None, default=str)


def _failures_path(output_file: str) -> str:
    if output_file.endswith(".json"):
        return output_file[: -len(".json")] + ".failures.json"
    return output_file + ".failures.json"


def _token_provider(config: FetchConfig, credentials_file: Optional[str]) -> TokenProvider:
    if credentials_file:
        creds = load_credentials_file(credentials_file)
        if config.graph:
            g = config.graph
            return TokenProvider(creds, authority_url=g.authority_url, scope=g.scope, timeout=g.timeout_s)
        return TokenProvider(creds)
    if config.graph is None:
        raise AuthError(
            "No credentials: pass --credentials or set GRAPH_TENANT_ID, "
            "GRAPH_CLIENT_ID and GRAPH_CLIENT_SECRET"
        )
    return TokenProvider.from_config(config.graph)


def cmd_fetch(args: argparse.Namespace) -> int:
    """Fetch one resource for every identifier in the input file."""
    start = time.monotonic()
    config = load_config()
    resolver = default_resolver()

    try:
        resolver.validate(args.resource)
    except UnknownResourceError:
        print("Error: Unknown resource")
        return 1

    try:
        identifiers = read_identifiers(args.input_file)
    except ValueError as exc:
        print(f"Error: {exc}")
        return 1
    logger.info("Loaded %d identifiers from %s", len(identifiers), args.input_file)

    try:
        tokens = _token_provider(config, args.credentials)
        tokens.get_token()
    except (AuthError, ValueError) as exc:
        print(f"Error: {exc}")
        return 1

    settings = config.engine
    if args.workers is not None:
        settings = dataclasses.replace(settings, worker_count=args.workers)
    if args.batch_size is not None:
        settings = dataclasses.replace(settings, batch_size=args.batch_size)

    api_base_url = config.graph.api_base_url if config.graph else "https://graph.microsoft.com/v1.0"
    transport = GraphBatchTransport(
        tokens,
        api_base_url=api_base_url,
        default_retry_after=config.default_retry_after_s,
    )
    engine = BulkFetchEngine(resolver, transport, settings)
    printer = ProgressPrinter()
    try:
        result = engine.run(identifiers, args.resource, on_progress=printer)
    finally:
        printer.finish()

    try:
        dump_file(result.results, args.output_file)
        if result.failures:
            dump_file(result.failures, _failures_path(args.output_file))
    except OSError as exc:
        print(f"Error: Failed to write the output file: {exc}")
        return 1

    if result.failures:
        print(f"Warning: {len(result.failures)} identifiers failed, see {_failures_path(args.output_file)}")
    if result.error is not None:
        print(f"Error: {result.error} ({result.completed}/{result.total} entries saved)")
        return 1
    print(f"Success: Processed {result.total} entries in {time.monotonic() - start:.2f} seconds")
    return 0


def cmd_auth(args: argparse.Namespace) -> int:
    """Check that the credentials can obtain a Graph token."""
    config = load_config()
    try:
        if len(args.values) == 3:
            client_id, client_secret, tenant_id = args.values
            tokens = TokenProvider(Credentials(tenant_id, client_id, resolve_secret(client_secret)))
        elif len(args.values) == 1:
            tokens = _token_provider(config, args.values[0])
        elif not args.values:
            tokens = _token_provider(config, None)
        else:
            print("Usage: auth <credential_file> OR auth <client_id> <client_secret> <tenant_id>")
            return 2
        tokens.get_token()
    except (AuthError, ValueError) as exc:
        print(f"Error: {exc}")
        return 1
    print("Success: Graph API authenticated")
    return 0


def cmd_resources(args: argparse.Namespace) -> int:
    """List the resource paths the resolver knows about."""
    resolver = default_resolver()
    for path in resolver.resources():
        print(path)
    for alias, target in sorted(resolver.aliases().items()):
        print(f"{alias} -> {target}")
    return 0


def _positive_int(raw: str) -> int:
    value = int(raw)
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {value}")
    return value


def _batch_size(raw: str) -> int:
    value = _positive_int(raw)
    if value > GRAPH_MAX_BATCH_SIZE:
        raise argparse.ArgumentTypeError(f"must be <= {GRAPH_MAX_BATCH_SIZE}, got {value}")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="graphfetch",
        description="Bulk per-user resource fetcher for Microsoft Graph",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    fetch_parser = subparsers.add_parser("fetch", help="Fetch a resource for many users")
    fetch_parser.add_argument("resource", help="Resource path, e.g. authentication/methods")
    fetch_parser.add_argument("input_file", help="JSON array of objects with an 'id' key")
    fetch_parser.add_argument("output_file", help="Where to write the result map")
    fetch_parser.add_argument(
        "--workers", "-w",
        type=_positive_int,
        default=None,
        help="Parallel batch workers (default: FETCH_WORKER_COUNT or 4)",
    )
    fetch_parser.add_argument(
        "--batch-size", "-b",
        type=_batch_size,
        default=None,
        help=f"Requests per batch call (default: FETCH_BATCH_SIZE or {GRAPH_MAX_BATCH_SIZE})",
    )
    fetch_parser.add_argument(
        "--credentials", "-c",
        default=None,
        help="JSON file with clientId, clientSecret and tenantId",
    )
    fetch_parser.set_defaults(func=cmd_fetch)

    auth_parser = subparsers.add_parser(
        "auth",
        help="Verify credentials",
        description="auth [<credential_file> | <client_id> <client_secret> <tenant_id>]",
    )
    auth_parser.add_argument("values", nargs="*", help="Credential file or client id, secret, tenant id")
    auth_parser.set_defaults(func=cmd_auth)

    resources_parser = subparsers.add_parser("resources", help="List supported resources")
    resources_parser.set_defaults(func=cmd_resources)

    return parser


def dispatch(argv: Optional[list[str]] = None) -> int:
    """Parse arguments, run the chosen command and return its exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(os.environ.get("LOG_LEVEL", "INFO"))
    try:
        return args.func(args)
    except ValueError as exc:
        # configuration errors from load_config()
        print(f"Error: {exc}")
        return 1


def main(argv: Optional[list[str]] = None) -> None:
    """Main CLI entry point."""
    sys.exit(dispatch(argv))
