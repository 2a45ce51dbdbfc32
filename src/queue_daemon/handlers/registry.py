"""Route name to callable resolution."""

from __future__ import annotations

import importlib
from collections.abc import Mapping

from queue_daemon.handlers.base import RouteCallable, TaskParams, UnknownRouteError
from queue_daemon.handlers.builtin import BUILTIN_ROUTES


class RouteRegistry:
    """Resolves task routes to callables and invokes them with task params.

    Params are passed as a dict built from the ordered pairs; a repeated key
    keeps its last value.
    """

    def __init__(
        self,
        routes: Mapping[str, RouteCallable] | None = None,
        *,
        include_builtin: bool = True,
    ) -> None:
        self._routes: dict[str, RouteCallable] = dict(BUILTIN_ROUTES) if include_builtin else {}
        if routes:
            self._routes.update(routes)

    @classmethod
    def from_import_paths(
        cls,
        import_paths: Mapping[str, str],
        *,
        include_builtin: bool = True,
    ) -> RouteRegistry:
        """Build a registry from ``{route: "package.module:attr"}`` entries."""

        return cls(
            {route: _import_callable(path) for route, path in import_paths.items()},
            include_builtin=include_builtin,
        )

    def register(self, route: str, func: RouteCallable) -> None:
        if not route.strip():
            raise ValueError("Route name must be non-empty.")
        self._routes[route] = func

    def routes(self) -> tuple[str, ...]:
        return tuple(sorted(self._routes))

    def resolve(self, route: str) -> RouteCallable:
        try:
            return self._routes[route]
        except KeyError:
            raise UnknownRouteError(f"The requested route does not exist: {route!r}") from None

    def execute(self, route: str, params: TaskParams) -> None:
        func = self.resolve(route)
        func(dict(params))


def _import_callable(path: str) -> RouteCallable:
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Invalid route target {path!r}. Expected 'package.module:attr'.")
    module = importlib.import_module(module_name)
    target = module
    for part in attr.split("."):
        target = getattr(target, part)
    if not callable(target):
        raise ValueError(f"Route target {path!r} is not callable.")
    return target
