"""What a forked worker process does with its claimed task."""

from __future__ import annotations

import logging
from collections.abc import Callable
from urllib.parse import urlencode

from queue_daemon.handlers.base import TaskHandler
from queue_daemon.taskqueue.models import QueueTaskView
from queue_daemon.taskqueue.repository import TaskQueueRepository

logger = logging.getLogger(__name__)

EXIT_TASK_SUCCEEDED = 0
EXIT_TASK_FAILED = 1


def execute_task(
    *,
    task: QueueTaskView,
    handler: TaskHandler,
    repository_factory: Callable[[], TaskQueueRepository],
) -> int:
    """Run the handler once, then delete the task whatever the outcome.

    Handler errors are logged and reflected in the returned exit code only; they
    never reach the supervisor. Returns the process exit code for the worker.
    """

    exit_code = EXIT_TASK_SUCCEEDED
    try:
        handler.execute(task.route, task.params)
    except Exception:  # noqa: BLE001
        exit_code = EXIT_TASK_FAILED
        logger.exception(
            "Task failed - task_id: %s, route: %s, params: %s",
            task.task_id,
            task.route,
            urlencode(task.params),
        )
    else:
        logger.debug("Task succeeded - task_id: %s, route: %s", task.task_id, task.route)

    repository = repository_factory()
    try:
        if not repository.delete_task(task_id=task.task_id):
            logger.warning("Task %s was already removed from the queue", task.task_id)
    except Exception:  # noqa: BLE001
        exit_code = EXIT_TASK_FAILED
        logger.exception("Could not remove task %s from the queue", task.task_id)
    finally:
        repository.close()
    return exit_code
