"""Diagnostic routes available in every registry."""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from pathlib import Path

logger = logging.getLogger(__name__)


def noop(params: Mapping[str, str]) -> None:
    """Do nothing."""


def log_message(params: Mapping[str, str]) -> None:
    logger.info("Task message: %s", params.get("message", ""))


def sleep(params: Mapping[str, str]) -> None:
    """Block for ``seconds`` (float, default 1)."""

    time.sleep(max(0.0, float(params.get("seconds", "1"))))


def touch(params: Mapping[str, str]) -> None:
    """Append one line to ``path``; used by smoke checks to observe execution."""

    path = Path(params["path"])
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(params.get("line", "done") + "\n")


def fail(params: Mapping[str, str]) -> None:
    raise RuntimeError(params.get("message", "Task failed on purpose"))


BUILTIN_ROUTES = {
    "noop": noop,
    "log": log_message,
    "sleep": sleep,
    "touch": touch,
    "fail": fail,
}
