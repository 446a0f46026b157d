from pathlib import Path
from typing import Iterable, NamedTuple, Optional

from .auth import Authenticator, NoOpAuthenticator
from .config import RouteConfig
from .handler import RequestLogger, THandler
from .http.model import HTTPRequest, HTTPResponse
from .services.files import FileService
from .utils.logging import info


# -----------------------------------------------------------------------------
#
# ERRORS
#
# -----------------------------------------------------------------------------


class ConfigurationRejected(Exception):
    """The routes can't be registered, the server must not start."""


class NoRoutesConfigured(ConfigurationRejected):
    def __init__(self) -> None:
        super().__init__("No routes configured")


class InvalidRoute(ConfigurationRejected):
    def __init__(self, index: int, route: RouteConfig, reason: str):
        super().__init__(
            f"Route {index} ({route.path!r} → {route.directory!r}): {reason}"
        )
        self.index: int = index
        self.route: RouteConfig = route


# -----------------------------------------------------------------------------
#
# MOUNTS
#
# -----------------------------------------------------------------------------


def normalizeMountPath(path: str) -> str:
    """Makes sure the mount path starts and ends with a `/`. Normalizing
    an already normalized path returns it unchanged."""
    if not path.startswith("/"):
        path = f"/{path}"
    if not path.endswith("/"):
        path = f"{path}/"
    return path


class Mount(NamedTuple):
    """A directory served under a URL path prefix."""

    path: str
    directory: Path

    @staticmethod
    def FromRoute(route: RouteConfig) -> "Mount":
        return Mount(normalizeMountPath(route.path), Path(route.directory))


# -----------------------------------------------------------------------------
#
# ROUTER
#
# -----------------------------------------------------------------------------


async def notFound(request: HTTPRequest) -> HTTPResponse:
    """Answers for the paths that no mount matches, without touching the
    filesystem."""
    return request.notFound(
        f"404 Not Found\n\nThe requested path '{request.path}' was not found on this server.\n"
    )


class Router:
    """Maps the request paths to the handlers of the mounts, the longest
    matching prefix wins."""

    def __init__(
        self,
        authenticator: Optional[Authenticator] = None,
        *,
        notFound: THandler = notFound,
    ):
        self.authenticator: Authenticator = authenticator or NoOpAuthenticator()
        self.notFound: THandler = notFound
        self.handlers: dict[str, THandler] = {}
        self.mounts: dict[str, Mount] = {}

    def registerRoutes(self, routes: Iterable[RouteConfig]) -> list[Mount]:
        """Registers the given routes, each composed as a logged,
        authenticated file service. All routes are validated before any is
        registered."""
        routes = list(routes)
        if not routes:
            raise NoRoutesConfigured()
        for i, route in enumerate(routes):
            if not route.path:
                raise InvalidRoute(i, route, "path cannot be empty")
            if not route.directory:
                raise InvalidRoute(i, route, "directory cannot be empty")
        mounts: list[Mount] = [Mount.FromRoute(_) for _ in routes]
        for mount in mounts:
            if mount.path in self.mounts:
                info(
                    "Route replaced",
                    path=mount.path,
                    previous=str(self.mounts[mount.path].directory),
                    directory=str(mount.directory),
                )
            self.mounts[mount.path] = mount
            self.register(
                mount.path,
                RequestLogger(
                    self.authenticator.middleware(
                        FileService(mount.path, mount.directory)
                    )
                ),
            )
            info("Route registered", path=mount.path, directory=str(mount.directory))
        return mounts

    def register(self, path: str, handler: THandler) -> "Router":
        """Registers a handler for the given mount path, replacing any
        handler already registered there."""
        self.handlers[normalizeMountPath(path)] = handler
        return self

    def match(self, path: str) -> THandler:
        # The longest mount path matching the request path wins
        best: Optional[str] = None
        for prefix in self.handlers:
            if path.startswith(prefix) and (best is None or len(prefix) > len(best)):
                best = prefix
        return self.notFound if best is None else self.handlers[best]

    async def process(self, request: HTTPRequest) -> HTTPResponse:
        return await self.match(request.path)(request)

    def __len__(self) -> int:
        return len(self.handlers)


# EOF
