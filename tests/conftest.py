"""Shared test fixtures."""

from __future__ import annotations

from pathlib import Path

import pytest

from queue_daemon.taskqueue.repository import TaskQueueRepository

_QUEUE_DAEMON_ENV = (
    "QUEUE_DAEMON_PROFILES",
    "QUEUE_DAEMON_ROUTES",
    "QUEUE_DAEMON_PID_FILE",
    "QUEUE_DAEMON_LOG_FILE",
    "QUEUE_DAEMON_LOG_LEVEL",
    "QUEUE_DAEMON_MAX_CONCURRENCY",
    "QUEUE_DAEMON_DRAIN_MAX_ATTEMPTS",
    "QUEUE_DAEMON_SQLITE_BUSY_TIMEOUT_MS",
)


@pytest.fixture()
def queue_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point every QUEUE_DAEMON_* path at tmp_path with fast timings."""

    for name in _QUEUE_DAEMON_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("QUEUE_DAEMON_DB_PATH", str(tmp_path / "queue.db"))
    monkeypatch.setenv("QUEUE_DAEMON_PID_DIR", str(tmp_path))
    monkeypatch.setenv("QUEUE_DAEMON_POLL_INTERVAL_MICROS", "10000")
    monkeypatch.setenv("QUEUE_DAEMON_DRAIN_RETRY_DELAY_SECONDS", "0.2")
    return tmp_path


@pytest.fixture()
def repository(tmp_path: Path):
    repo = TaskQueueRepository(tmp_path / "queue.db")
    repo.init_schema()
    yield repo
    repo.close()
