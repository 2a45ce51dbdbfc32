"""Domain models for the task queue."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class TaskClaimState(str, Enum):
    """Filter values for queue listings."""

    ALL = "all"
    PENDING = "pending"
    CLAIMED = "claimed"


@dataclass(slots=True)
class QueueTaskCreate:
    """Input payload for enqueuing a task."""

    route: str
    params: tuple[tuple[str, str], ...] = ()
    task_id: str | None = None


@dataclass(slots=True)
class QueueTaskView:
    """Readable task view for CLI, supervisor and worker logic."""

    task_id: str
    seq: int
    route: str
    params: tuple[tuple[str, str], ...]
    claimed: bool
    claimed_by: str | None
    claimed_at: datetime | None
    created_at: datetime


@dataclass(slots=True)
class QueueDepth:
    """Queue size breakdown for status reporting."""

    total: int
    pending: int
    claimed: int
