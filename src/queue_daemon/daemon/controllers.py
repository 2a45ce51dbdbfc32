"""Controllers for daemon CLI commands."""

from __future__ import annotations

import logging
import os
import signal
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from functools import partial
from typing import NoReturn

from queue_daemon.config import ConfigError, Settings, configure_logging
from queue_daemon.daemon.pidfile import PidFileError, ProcessIdentityFile, process_exists
from queue_daemon.daemon.supervisor import QueueSupervisor, SpawnError, SupervisorRunSummary
from queue_daemon.handlers import RouteRegistry, TaskHandler
from queue_daemon.taskqueue.models import QueueTaskCreate, TaskClaimState
from queue_daemon.taskqueue.repository import MalformedTaskError, TaskQueueRepository

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DaemonProfileCommand:
    """CLI input for start/stop/status/run."""

    profile: str


@dataclass(slots=True)
class EnqueueTaskCommand:
    """CLI input for task enqueue."""

    route: str
    params: tuple[tuple[str, str], ...]
    task_id: str | None = None


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    state: TaskClaimState
    limit: int


@dataclass(slots=True)
class DaemonCommandResult:
    """Report to render in CLI."""

    lines: list[str]
    success: bool


class DaemonCliController:
    """Coordinates daemon lifecycle and queue inspection CLI operations."""

    def __init__(
        self,
        *,
        fork: Callable[[], int] = os.fork,
        kill: Callable[[int, int], None] = os.kill,
    ) -> None:
        self._fork = fork
        self._kill = kill

    def start(self, command: DaemonProfileCommand) -> DaemonCommandResult:
        """Fork the supervisor into the background and record its pid."""

        prepared = self._prepare_supervisor(command.profile)
        if isinstance(prepared, DaemonCommandResult):
            return prepared
        settings, handler = prepared
        pid_file = ProcessIdentityFile(settings.profile.pid_file_path)

        try:
            pid = self._fork()
        except OSError as error:
            msg = f"Queue. Initial fork failed: {error}"
            logger.error(msg)
            return DaemonCommandResult(lines=[msg], success=False)

        if pid == 0:
            _run_background(settings=settings, handler=handler)

        pid_file.write(pid)
        logger.debug("Queue. Daemon created successfully at: %s", pid)
        return DaemonCommandResult(
            lines=[f"Queue daemon started at PID: {pid} (profile={settings.profile.name})"],
            success=True,
        )

    def run(self, command: DaemonProfileCommand) -> DaemonCommandResult:
        """Run the supervisor in the foreground until SIGTERM/SIGINT."""

        prepared = self._prepare_supervisor(command.profile)
        if isinstance(prepared, DaemonCommandResult):
            return prepared
        settings, handler = prepared
        ProcessIdentityFile(settings.profile.pid_file_path).write(os.getpid())
        try:
            summary = run_supervisor(settings=settings, handler=handler)
        except SpawnError as error:
            return DaemonCommandResult(lines=[f"Queue daemon aborted: {error}"], success=False)
        return DaemonCommandResult(
            lines=_summary_lines(summary),
            success=summary.drain is None or summary.drain.clean,
        )

    def stop(self, command: DaemonProfileCommand) -> DaemonCommandResult:
        """Send SIGTERM to the pid recorded for the profile."""

        try:
            settings = Settings.from_env(profile_name=command.profile)
        except ConfigError as error:
            return _config_failure(error)
        pid_file = ProcessIdentityFile(settings.profile.pid_file_path)

        try:
            pid = pid_file.read()
        except PidFileError as error:
            logger.debug(str(error))
            return DaemonCommandResult(lines=[str(error)], success=False)
        if pid is None:
            msg = f"Queue daemon pid file {pid_file.path} does not exist"
            logger.error(msg)
            return DaemonCommandResult(lines=[msg], success=False)

        logger.debug("Sending SIGTERM to pid %s", pid)
        lines = [f"Sending SIGTERM to pid {pid}"]
        try:
            self._kill(pid, signal.SIGTERM)
        except OSError as error:
            lines.append(f"An error occurred while sending SIGTERM: {error}")
            pid_file.remove()
            return DaemonCommandResult(lines=lines, success=False)

        lines.append(f"Signal SIGTERM sent to pid {pid}")
        return DaemonCommandResult(lines=lines, success=True)

    def status(self, command: DaemonProfileCommand) -> DaemonCommandResult:
        """Report pid-file liveness and queue depth."""

        try:
            settings = Settings.from_env(profile_name=command.profile)
        except ConfigError as error:
            return _config_failure(error)
        pid_file = ProcessIdentityFile(settings.profile.pid_file_path)

        lines: list[str] = []
        try:
            pid = pid_file.read()
        except PidFileError as error:
            pid = None
            lines.append(str(error))
        if pid is not None:
            lines.append(f"Queue daemon is running at PID: {pid}")
            if not process_exists(pid):
                lines.append(f"Warning: no process with PID {pid}; pid file may be stale")
        else:
            lines.append("Queue daemon is NOT running")

        with _repository(settings) as repository:
            depth = repository.count_by_state()
        lines.append(
            f"Queue has {depth.total} tasks in queue "
            f"(pending={depth.pending} claimed={depth.claimed})",
        )
        return DaemonCommandResult(lines=lines, success=True)

    def enqueue(self, command: EnqueueTaskCommand) -> DaemonCommandResult:
        try:
            settings = Settings.from_env(profile_name=None)
        except ConfigError as error:
            return _config_failure(error)
        with _repository(settings) as repository:
            try:
                task = repository.enqueue_task(
                    QueueTaskCreate(
                        route=command.route,
                        params=command.params,
                        task_id=command.task_id,
                    ),
                )
            except ValueError as error:
                return DaemonCommandResult(lines=[str(error)], success=False)
        return DaemonCommandResult(
            lines=[f"Task enqueued: task_id={task.task_id} route={task.route}"],
            success=True,
        )

    def list_tasks(self, command: ListTasksCommand) -> DaemonCommandResult:
        try:
            settings = Settings.from_env(profile_name=None)
        except ConfigError as error:
            return _config_failure(error)
        with _repository(settings) as repository:
            try:
                tasks = repository.list_tasks(state=command.state, limit=command.limit)
            except MalformedTaskError as error:
                return DaemonCommandResult(lines=[str(error)], success=False)

        if not tasks:
            return DaemonCommandResult(lines=["No tasks found."], success=True)
        lines = []
        for task in tasks:
            params = " ".join(f"{key}={value}" for key, value in task.params)
            state = f"claimed by {task.claimed_by}" if task.claimed else "pending"
            line = (
                f"{task.task_id} route={task.route} {state} "
                f"created_at={task.created_at.isoformat()}"
            )
            lines.append(f"{line} params: {params}" if params else line)
        return DaemonCommandResult(lines=lines, success=True)

    def _prepare_supervisor(
        self,
        profile: str,
    ) -> tuple[Settings, TaskHandler] | DaemonCommandResult:
        try:
            settings = Settings.from_env(profile_name=profile)
        except ConfigError as error:
            return _config_failure(error)

        pid_file = ProcessIdentityFile(settings.profile.pid_file_path)
        if pid_file.is_process_alive():
            return DaemonCommandResult(
                lines=[f"Queue daemon is already running at PID: {pid_file.read()}"],
                success=False,
            )
        if pid_file.remove():
            logger.warning("Removed stale pid file %s", pid_file.path)

        try:
            handler = RouteRegistry.from_import_paths(settings.routes)
        except (ImportError, AttributeError, ValueError) as error:
            msg = f"Queue. Could not load task routes: {error}"
            logger.error(msg)
            return DaemonCommandResult(lines=[msg], success=False)

        with _repository(settings):
            pass
        return settings, handler


def run_supervisor(*, settings: Settings, handler: TaskHandler) -> SupervisorRunSummary:
    """Run the dispatch loop for one profile until it terminates."""

    repository_factory = partial(
        TaskQueueRepository,
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository = repository_factory()
    try:
        supervisor = QueueSupervisor(
            repository=repository,
            handler=handler,
            profile=settings.profile,
            repository_factory=repository_factory,
        )
        return supervisor.run()
    finally:
        repository.close()


def _run_background(*, settings: Settings, handler: TaskHandler) -> NoReturn:
    exit_code = 1
    try:
        os.setsid()
        _redirect_stdio()
        configure_logging(settings.logging, log_file=settings.profile.log_file, force=True)
        logger.debug(
            "Queue. Config %s loaded, max: %s, sleep: %s",
            settings.profile.name,
            settings.profile.max_concurrency,
            settings.profile.poll_interval_micros,
        )
        run_supervisor(settings=settings, handler=handler)
        exit_code = 0
    except SpawnError:
        logger.exception("Queue. Could not spawn child task process")
    except BaseException:  # noqa: BLE001
        logger.exception("Queue daemon crashed")
    finally:
        logging.shutdown()
        os._exit(exit_code)


def _redirect_stdio() -> None:
    devnull = os.open(os.devnull, os.O_RDWR)
    for fd in (0, 1, 2):
        os.dup2(devnull, fd)
    if devnull > 2:
        os.close(devnull)


def _config_failure(error: ConfigError) -> DaemonCommandResult:
    msg = f"Queue. {error} Exiting."
    logger.error(msg)
    return DaemonCommandResult(lines=[msg], success=False)


def _summary_lines(summary: SupervisorRunSummary) -> list[str]:
    lines = [
        "Supervisor summary: "
        f"spawned={summary.spawned} reaped={summary.reaped} "
        f"failed_workers={summary.failed_workers} idle_polls={summary.idle_polls}",
    ]
    if summary.drain is not None and not summary.drain.clean:
        lines.append(
            "Could not terminate all workers: "
            + ", ".join(str(pid) for pid in sorted(summary.drain.residual_pids)),
        )
    lines.append("Queue daemon exited")
    return lines


@contextmanager
def _repository(settings: Settings) -> Iterator[TaskQueueRepository]:
    repository = TaskQueueRepository(
        settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
