"""Client-credentials authentication against the Microsoft identity platform."""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Optional

import requests

from scripts.graphfetch.config import GraphConfig
from scripts.graphfetch.errors import AuthError
from scripts.graphfetch.secrets import resolve_secret

logger = logging.getLogger("graphfetch.auth")

# Refresh this long before the token actually expires
EXPIRY_MARGIN_S = 60


@dataclass(frozen=True)
class Credentials:
    tenant_id: str
    client_id: str
    client_secret: str

    def __repr__(self) -> str:
        return f"Credentials(tenant_id={self.tenant_id!r}, client_id={self.client_id!r})"


def load_credentials_file(path: str) -> Credentials:
    """Read ``{"clientId", "clientSecret", "tenantId"}`` from a JSON file."""
    try:
        with open(path, encoding="utf-8") as fh:
            data = json.load(fh)
    except OSError as exc:
        raise ValueError(f"Failed to read the credential file {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ValueError(f"Failed to parse the credential file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"Credential file {path} must contain a JSON object")

    missing = [k for k in ("clientId", "clientSecret", "tenantId") if not data.get(k)]
    if missing:
        raise ValueError(f"Credential file {path} is missing {', '.join(missing)}")
    return Credentials(
        tenant_id=str(data["tenantId"]),
        client_id=str(data["clientId"]),
        client_secret=resolve_secret(str(data["clientSecret"])),
    )


class TokenProvider:
    """Hands out a cached bearer token, refreshing it shortly before expiry.

    Safe to share between worker threads.
    """

    def __init__(
        self,
        credentials: Credentials,
        authority_url: str = "https://login.microsoftonline.com",
        scope: str = "https://graph.microsoft.com/.default",
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
    ) -> None:
        self.credentials = credentials
        self._token_url = (
            f"{authority_url.rstrip('/')}/{credentials.tenant_id}/oauth2/v2.0/token"
        )
        self._scope = scope
        self._session = session or requests.Session()
        self._timeout = timeout
        self._lock = threading.Lock()
        self._token: Optional[str] = None
        self._expires_at = 0.0

    @classmethod
    def from_config(
        cls, config: GraphConfig, session: Optional[requests.Session] = None
    ) -> "TokenProvider":
        creds = Credentials(config.tenant_id, config.client_id, config.client_secret)
        return cls(
            creds,
            authority_url=config.authority_url,
            scope=config.scope,
            session=session,
            timeout=config.timeout_s,
        )

    def get_token(self) -> str:
        with self._lock:
            if self._token is None or time.monotonic() >= self._expires_at:
                self._token, self._expires_at = self._acquire()
            return self._token

    def invalidate(self) -> None:
        with self._lock:
            self._token = None
            self._expires_at = 0.0

    def _acquire(self) -> tuple[str, float]:
        creds = self.credentials
        try:
            resp = self._session.post(
                self._token_url,
                data={
                    "grant_type": "client_credentials",
                    "client_id": creds.client_id,
                    "client_secret": creds.client_secret,
                    "scope": self._scope,
                },
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            raise AuthError(f"Token request failed: {exc}") from exc

        try:
            data = resp.json()
        except ValueError:
            data = {}
        if resp.status_code != 200 or "access_token" not in data:
            detail = data.get("error_description") or data.get("error") or resp.text[:200]
            raise AuthError(f"Authentication failed (HTTP {resp.status_code}): {detail}")

        expires_in = float(data.get("expires_in", 3600))
        logger.info("Acquired Graph token for client %s", creds.client_id)
        return data["access_token"], time.monotonic() + max(expires_in - EXPIRY_MARGIN_S, 0.0)
