"""Handler interface for task execution."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Protocol

TaskParams = tuple[tuple[str, str], ...]
RouteCallable = Callable[[Mapping[str, str]], object]


class UnknownRouteError(LookupError):
    """Raised when a task names a route that is not registered."""


class TaskHandler(Protocol):
    """Protocol implemented by task handlers."""

    def execute(self, route: str, params: TaskParams) -> None:
        """Run one task's business logic; raise on failure."""
