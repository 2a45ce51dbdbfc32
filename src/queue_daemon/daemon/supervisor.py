"""Supervisor dispatch loop: claim, fork, reap, drain."""

from __future__ import annotations

import logging
import os
import socket
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from queue_daemon.config import DaemonProfile
from queue_daemon.daemon.pidfile import ProcessIdentityFile
from queue_daemon.daemon.pool import WorkerPool
from queue_daemon.daemon.shutdown import DrainReport, ShutdownCoordinator
from queue_daemon.daemon.signals import SignalBridge
from queue_daemon.daemon.worker import EXIT_TASK_FAILED, execute_task
from queue_daemon.handlers.base import TaskHandler
from queue_daemon.storage.common import utc_now
from queue_daemon.taskqueue.models import QueueTaskView
from queue_daemon.taskqueue.repository import TaskQueueRepository

logger = logging.getLogger(__name__)


class DispatchState(str, Enum):
    """Supervisor lifecycle states."""

    RUNNING = "running"
    DRAINING = "draining"
    TERMINATED = "terminated"


class SpawnError(RuntimeError):
    """Forking a worker failed; the supervisor cannot keep its guarantees."""


@dataclass(slots=True)
class SupervisorRunSummary:
    """Aggregate supervisor counters for logging and tests."""

    ticks: int = 0
    spawned: int = 0
    reaped: int = 0
    failed_workers: int = 0
    idle_polls: int = 0
    saturated_polls: int = 0
    drain: DrainReport | None = None


class QueueSupervisor:
    """Claims queued tasks and runs each one in a forked worker process.

    Claims happen only while the pool has a free slot, so a task is never left
    claimed without a worker unless the fork itself fails; in that case the
    claim is released before the supervisor shuts down.
    """

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: TaskQueueRepository,
        handler: TaskHandler,
        profile: DaemonProfile,
        repository_factory: Callable[[], TaskQueueRepository],
        pid_file: ProcessIdentityFile | None = None,
        signals: SignalBridge | None = None,
        pool: WorkerPool | None = None,
        supervisor_id: str | None = None,
        fork: Callable[[], int] = os.fork,
        kill: Callable[[int, int], None] = os.kill,
    ) -> None:
        self.repository = repository
        self.handler = handler
        self.profile = profile
        self.repository_factory = repository_factory
        self.pid_file = (
            pid_file if pid_file is not None else ProcessIdentityFile(profile.pid_file_path)
        )
        self.signals = signals if signals is not None else SignalBridge()
        self.pool = pool if pool is not None else WorkerPool(profile.max_concurrency)
        self.shutdown = ShutdownCoordinator(pool=self.pool, signals=self.signals, kill=kill)
        self.supervisor_id = supervisor_id or f"{socket.gethostname()}:{os.getpid()}"
        self._fork = fork
        self._state = DispatchState.RUNNING

    @property
    def state(self) -> DispatchState:
        return self._state

    def run(self) -> SupervisorRunSummary:
        """Run until a terminate signal arrives, then drain and clean up."""

        summary = SupervisorRunSummary()
        logger.info(
            "Supervisor %s started: profile=%s max=%s sleep=%sus",
            self.supervisor_id,
            self.profile.name,
            self.profile.max_concurrency,
            self.profile.poll_interval_micros,
        )
        with self.signals.installed():
            try:
                while self._state is DispatchState.RUNNING:
                    self.tick(summary)
            except SpawnError:
                raise
            except Exception:
                logger.exception("Supervisor loop failed; draining workers")
                raise
            finally:
                # Workers are drained and the pid file removed however the loop ends.
                self._state = DispatchState.DRAINING
                summary.drain = self._terminate()
        return summary

    def tick(self, summary: SupervisorRunSummary | None = None) -> None:
        """One loop iteration of the RUNNING state."""

        summary = summary if summary is not None else SupervisorRunSummary()
        summary.ticks += 1
        self._reap(summary)

        if self.signals.terminate_requested:
            logger.info(
                "Received %s; no new tasks will be claimed",
                self.signals.signal_name or "terminate request",
            )
            self._state = DispatchState.DRAINING
            return

        if not self.pool.can_spawn():
            summary.saturated_polls += 1
            self.signals.wait(self.profile.poll_interval_seconds)
            return

        task = self.repository.claim_next(claimed_by=self.supervisor_id)
        if task is None:
            summary.idle_polls += 1
            self.signals.wait(self.profile.poll_interval_seconds)
            return

        self._spawn(task)
        summary.spawned += 1

    def _spawn(self, task: QueueTaskView) -> None:
        try:
            pid = self._fork()
        except OSError as error:
            logger.error("Could not spawn worker for task %s: %s", task.task_id, error)
            if self.repository.release_claim(task_id=task.task_id):
                logger.info("Released claim on task %s", task.task_id)
            raise SpawnError(f"Could not spawn worker process: {error}") from error

        if pid == 0:
            self._run_child(task)

        self.pool.register(pid, utc_now())
        logger.debug(
            "Spawned worker pid=%s for task %s (route=%s, active=%s/%s)",
            pid,
            task.task_id,
            task.route,
            len(self.pool),
            self.pool.max_concurrency,
        )

    def _run_child(self, task: QueueTaskView) -> None:
        exit_code = EXIT_TASK_FAILED
        try:
            self.signals.reset_in_child()
            exit_code = execute_task(
                task=task,
                handler=self.handler,
                repository_factory=self.repository_factory,
            )
        except BaseException:  # noqa: BLE001
            logger.exception("Worker for task %s crashed", task.task_id)
        finally:
            logging.shutdown()
            os._exit(exit_code)

    def _reap(self, summary: SupervisorRunSummary) -> None:
        for worker in self.signals.reap_children(self.pool):
            summary.reaped += 1
            if worker.exit_code != 0:
                summary.failed_workers += 1
                logger.warning("Worker pid=%s exited with code %s", worker.pid, worker.exit_code)

    def _terminate(self) -> DrainReport:
        report = self.shutdown.drain(
            max_attempts=self.profile.drain_max_attempts,
            retry_delay=self.profile.drain_retry_delay_seconds,
        )
        self.pid_file.remove()
        self._state = DispatchState.TERMINATED
        logger.info("Queue daemon exited (profile=%s)", self.profile.name)
        return report
