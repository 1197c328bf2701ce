"""Table-driven resource resolver for per-user Graph resources.

Resource paths are written the way the Graph URL reads below ``/users/{id}``,
e.g. ``authentication/methods``. The dotted form ``authentication.methods`` is
accepted too.
"""

from __future__ import annotations

from typing import Callable, Iterable, Optional
from urllib.parse import quote

from scripts.graphfetch.engine.base import Resolver
from scripts.graphfetch.engine.types import RequestDescriptor
from scripts.graphfetch.errors import ResolutionError, UnknownResourceError

RequestBuilder = Callable[[str], RequestDescriptor]

USER_RESOURCES = [
    "authentication/methods",
    "authentication/phoneMethods",
    "authentication/emailMethods",
    "authentication/fido2Methods",
    "authentication/microsoftAuthenticatorMethods",
    "authentication/windowsHelloForBusinessMethods",
    "memberOf",
    "transitiveMemberOf",
    "licenseDetails",
    "manager",
    "ownedDevices",
    "registeredDevices",
]

# Names accepted by the original interactive shell
ALIASES = {
    "authenticate": "authentication/methods",
}

_FORBIDDEN_CHARS = ("/", "?", "#")


def normalize_path(resource_path: str) -> str:
    return resource_path.strip().strip("/").replace(".", "/")


def user_resource(segment: str) -> RequestBuilder:
    """Builder for ``GET /users/{id}/<segment>``."""

    def build(identifier: str) -> RequestDescriptor:
        return RequestDescriptor(
            method="GET",
            url=f"/users/{quote(identifier, safe='@')}/{segment}",
        )

    return build


class ResourceResolver(Resolver):
    def __init__(
        self,
        routes: dict[str, RequestBuilder],
        aliases: Optional[dict[str, str]] = None,
    ) -> None:
        self._routes = {normalize_path(k): v for k, v in routes.items()}
        self._aliases = dict(aliases or {})
        for alias, target in self._aliases.items():
            if normalize_path(target) not in self._routes:
                raise UnknownResourceError(f"alias {alias!r} points to unknown {target!r}")

    def canonical(self, resource_path: str) -> str:
        path = self._aliases.get(resource_path.strip(), resource_path)
        return normalize_path(path)

    def validate(self, resource_path: str) -> None:
        if self.canonical(resource_path) not in self._routes:
            raise UnknownResourceError(f"Unknown resource: {resource_path}")

    def resolve(self, resource_path: str, identifier: str) -> RequestDescriptor:
        builder = self._routes.get(self.canonical(resource_path))
        if builder is None:
            raise UnknownResourceError(f"Unknown resource: {resource_path}")
        if not isinstance(identifier, str) or not identifier.strip():
            raise ResolutionError(str(identifier), "empty identifier")
        if identifier != identifier.strip():
            raise ResolutionError(identifier, "surrounding whitespace")
        for ch in _FORBIDDEN_CHARS:
            if ch in identifier:
                raise ResolutionError(identifier, f"contains {ch!r}")
        return builder(identifier)

    def resources(self) -> list[str]:
        return sorted(self._routes)

    def aliases(self) -> dict[str, str]:
        return dict(self._aliases)


def default_resolver(extra: Iterable[str] = ()) -> ResourceResolver:
    routes = {path: user_resource(path) for path in [*USER_RESOURCES, *extra]}
    return ResourceResolver(routes, ALIASES)
