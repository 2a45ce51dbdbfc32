"""Daemon supervisor: dispatch loop, worker pool, signals and shutdown."""

from queue_daemon.daemon.pidfile import PidFileError, ProcessIdentityFile
from queue_daemon.daemon.pool import PoolSaturatedError, WorkerPool
from queue_daemon.daemon.shutdown import DrainReport, ShutdownCoordinator
from queue_daemon.daemon.signals import SignalBridge
from queue_daemon.daemon.supervisor import (
    DispatchState,
    QueueSupervisor,
    SpawnError,
    SupervisorRunSummary,
)

__all__ = [
    "DispatchState",
    "DrainReport",
    "PidFileError",
    "PoolSaturatedError",
    "ProcessIdentityFile",
    "QueueSupervisor",
    "ShutdownCoordinator",
    "SignalBridge",
    "SpawnError",
    "SupervisorRunSummary",
    "WorkerPool",
]
