"""CLI entrypoint for queue-daemon."""

import rich_click as click

from queue_daemon import __version__
from queue_daemon.config import ConfigError, LoggingSettings, configure_logging
from queue_daemon.daemon.controllers import (
    DaemonCliController,
    DaemonCommandResult,
    DaemonProfileCommand,
    EnqueueTaskCommand,
    ListTasksCommand,
)
from queue_daemon.taskqueue.models import TaskClaimState

click.rich_click.USE_MARKDOWN = True
DAEMON_CONTROLLER = DaemonCliController()

_PROFILE_ARGUMENT = click.argument("profile", default="default", required=False)


@click.group()
@click.version_option(version=__version__, prog_name="queue-daemon")
def queue_daemon() -> None:
    """Job queue daemon CLI."""

    try:
        configure_logging(LoggingSettings.from_env())
    except ConfigError as error:
        raise click.ClickException(str(error)) from error


@queue_daemon.command("start")
@_PROFILE_ARGUMENT
def start(profile: str) -> None:
    """Fork the supervisor into the background for PROFILE."""

    _emit_result(DAEMON_CONTROLLER.start(DaemonProfileCommand(profile=profile)), "start")


@queue_daemon.command("stop")
@_PROFILE_ARGUMENT
def stop(profile: str) -> None:
    """Send SIGTERM to the running supervisor of PROFILE."""

    _emit_result(DAEMON_CONTROLLER.stop(DaemonProfileCommand(profile=profile)), "stop")


@queue_daemon.command("status")
@_PROFILE_ARGUMENT
def status(profile: str) -> None:
    """Show whether PROFILE is running and how many tasks are queued."""

    _emit_result(DAEMON_CONTROLLER.status(DaemonProfileCommand(profile=profile)), "status")


@queue_daemon.command("run")
@_PROFILE_ARGUMENT
def run(profile: str) -> None:
    """Run the supervisor for PROFILE in the foreground."""

    _emit_result(DAEMON_CONTROLLER.run(DaemonProfileCommand(profile=profile)), "run")


@queue_daemon.command("enqueue")
@click.argument("route")
@click.option(
    "--param",
    "-p",
    "params",
    multiple=True,
    help="Task parameter as key=value. Can be repeated; order is kept.",
)
@click.option("--task-id", default=None, help="Explicit task id (default: random uuid).")
def enqueue(route: str, params: tuple[str, ...], task_id: str | None) -> None:
    """Add a task for ROUTE to the queue."""

    _emit_result(
        DAEMON_CONTROLLER.enqueue(
            EnqueueTaskCommand(
                route=route,
                params=tuple(_parse_param(value) for value in params),
                task_id=task_id,
            ),
        ),
        "enqueue",
    )


@queue_daemon.command("tasks")
@click.option(
    "--state",
    type=click.Choice([state.value for state in TaskClaimState], case_sensitive=False),
    default=TaskClaimState.ALL.value,
    show_default=True,
    help="Filter by claim state.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max tasks to print.",
)
def tasks(state: str, limit: int) -> None:
    """List queued tasks in claim order."""

    _emit_result(
        DAEMON_CONTROLLER.list_tasks(
            ListTasksCommand(state=TaskClaimState(state.lower()), limit=limit),
        ),
        "tasks",
    )


def _parse_param(value: str) -> tuple[str, str]:
    key, sep, param_value = value.partition("=")
    if not sep or not key.strip():
        raise click.BadParameter(f"Expected key=value, got {value!r}", param_hint="--param")
    return key.strip(), param_value


def _emit_result(result: DaemonCommandResult, command_name: str) -> None:
    _emit_lines(result.lines)
    if not result.success:
        raise click.ClickException(f"queue-daemon {command_name} failed.")


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    queue_daemon()
