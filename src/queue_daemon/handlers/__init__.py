"""Task handler implementations."""

from queue_daemon.handlers.base import TaskHandler, UnknownRouteError
from queue_daemon.handlers.registry import RouteRegistry

__all__ = [
    "RouteRegistry",
    "TaskHandler",
    "UnknownRouteError",
]
