"""In-flight worker process bookkeeping."""

from __future__ import annotations

from datetime import datetime


class PoolSaturatedError(RuntimeError):
    """Registering one more worker would exceed the concurrency ceiling."""


class WorkerPool:
    """Owns the pid -> start time mapping of live worker processes.

    Mutated only from the supervisor loop body; signal handlers never touch it.
    """

    def __init__(self, max_concurrency: int) -> None:
        if max_concurrency <= 0:
            raise ValueError(f"max_concurrency must be > 0, got {max_concurrency}")
        self.max_concurrency = max_concurrency
        self._workers: dict[int, datetime] = {}

    def __len__(self) -> int:
        return len(self._workers)

    def __contains__(self, pid: object) -> bool:
        return pid in self._workers

    def can_spawn(self) -> bool:
        return len(self._workers) < self.max_concurrency

    def register(self, pid: int, started_at: datetime) -> None:
        if pid in self._workers:
            raise ValueError(f"Worker pid {pid} is already registered")
        if not self.can_spawn():
            raise PoolSaturatedError(
                f"Worker pool is full ({len(self._workers)}/{self.max_concurrency})",
            )
        self._workers[pid] = started_at

    def reap(self, pid: int) -> datetime | None:
        """Forget a worker; returns its start time, or None if it was unknown."""

        return self._workers.pop(pid, None)

    def active_pids(self) -> set[int]:
        return set(self._workers)

    def started_at(self, pid: int) -> datetime | None:
        return self._workers.get(pid)
