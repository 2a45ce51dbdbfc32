from __future__ import annotations

import os
import signal
import subprocess
import sys
import time
from pathlib import Path

import allure
import pytest
from click.testing import CliRunner

import queue_daemon.main as main_module
from queue_daemon.daemon.controllers import DaemonCliController
from queue_daemon.main import queue_daemon

pytestmark = [
    allure.epic("Queue Daemon"),
    allure.feature("Control Surface"),
]


def _pid_path(queue_env: Path, profile: str = "default") -> Path:
    return queue_env / f"queue-daemon.{profile}.pid"


def _use_controller(monkeypatch: pytest.MonkeyPatch, controller: DaemonCliController) -> None:
    monkeypatch.setattr(main_module, "DAEMON_CONTROLLER", controller)


def _finished_pid() -> int:
    pid = os.fork()
    if pid == 0:
        os._exit(0)
    os.waitpid(pid, 0)
    return pid


def test_status_when_not_running(queue_env: Path) -> None:
    result = CliRunner().invoke(queue_daemon, ["status"])

    assert result.exit_code == 0, result.output
    assert "Queue daemon is NOT running" in result.output
    assert "Queue has 0 tasks in queue (pending=0 claimed=0)" in result.output


def test_enqueue_and_list_tasks(queue_env: Path) -> None:
    runner = CliRunner()

    enqueued = runner.invoke(
        queue_daemon,
        ["enqueue", "mail", "-p", "to=a@example.com", "-p", "subject=hi", "--task-id", "t-1"],
    )
    listed = runner.invoke(queue_daemon, ["tasks", "--state", "pending"])
    status = runner.invoke(queue_daemon, ["status"])

    assert enqueued.exit_code == 0, enqueued.output
    assert "Task enqueued: task_id=t-1 route=mail" in enqueued.output
    assert listed.exit_code == 0, listed.output
    assert "t-1 route=mail pending" in listed.output
    assert "params: to=a@example.com subject=hi" in listed.output
    assert "Queue has 1 tasks in queue (pending=1 claimed=0)" in status.output


def test_enqueue_rejects_malformed_param(queue_env: Path) -> None:
    result = CliRunner().invoke(queue_daemon, ["enqueue", "mail", "-p", "novalue"])

    assert result.exit_code != 0
    assert "Expected key=value" in result.output


def test_enqueue_duplicate_task_id_fails(queue_env: Path) -> None:
    runner = CliRunner()
    runner.invoke(queue_daemon, ["enqueue", "noop", "--task-id", "t-1"])

    result = runner.invoke(queue_daemon, ["enqueue", "noop", "--task-id", "t-1"])

    assert result.exit_code == 1
    assert "Task already exists: t-1" in result.output


def test_tasks_on_empty_queue(queue_env: Path) -> None:
    result = CliRunner().invoke(queue_daemon, ["tasks"])

    assert result.exit_code == 0
    assert "No tasks found." in result.output


def test_start_records_forked_pid(queue_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _use_controller(monkeypatch, DaemonCliController(fork=lambda: 4321))

    result = CliRunner().invoke(queue_daemon, ["start"])

    assert result.exit_code == 0, result.output
    assert "Queue daemon started at PID: 4321 (profile=default)" in result.output
    assert _pid_path(queue_env).read_text(encoding="ascii").strip() == "4321"


def test_start_unknown_profile_fails(queue_env: Path) -> None:
    result = CliRunner().invoke(queue_daemon, ["start", "mail"])

    assert result.exit_code == 1
    assert 'Config not found ("daemon.mail")' in result.output
    assert "queue-daemon start failed." in result.output


def test_start_refuses_when_already_running(queue_env: Path) -> None:
    _pid_path(queue_env).write_text(f"{os.getpid()}\n", encoding="ascii")

    result = CliRunner().invoke(queue_daemon, ["start"])

    assert result.exit_code == 1
    assert f"already running at PID: {os.getpid()}" in result.output


def test_start_replaces_stale_pid_file(queue_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _pid_path(queue_env).write_text(f"{_finished_pid()}\n", encoding="ascii")
    _use_controller(monkeypatch, DaemonCliController(fork=lambda: 4321))

    result = CliRunner().invoke(queue_daemon, ["start"])

    assert result.exit_code == 0, result.output
    assert _pid_path(queue_env).read_text(encoding="ascii").strip() == "4321"


def test_start_reports_fork_failure(queue_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    def failing_fork() -> int:
        raise OSError("no more processes")

    _use_controller(monkeypatch, DaemonCliController(fork=failing_fork))

    result = CliRunner().invoke(queue_daemon, ["start"])

    assert result.exit_code == 1
    assert "Queue. Initial fork failed: no more processes" in result.output
    assert not _pid_path(queue_env).exists()


def test_start_with_bad_route_import_fails(
    queue_env: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("QUEUE_DAEMON_ROUTES", "mail=no_such_module_xyz:send")
    _use_controller(monkeypatch, DaemonCliController(fork=lambda: 4321))

    result = CliRunner().invoke(queue_daemon, ["start"])

    assert result.exit_code == 1
    assert "Could not load task routes" in result.output
    assert not _pid_path(queue_env).exists()


def test_stop_without_pid_file(queue_env: Path) -> None:
    result = CliRunner().invoke(queue_daemon, ["stop"])

    assert result.exit_code == 1
    assert f"pid file {_pid_path(queue_env)} does not exist" in result.output


def test_stop_with_garbage_pid_file(queue_env: Path) -> None:
    _pid_path(queue_env).write_text("not-a-pid", encoding="ascii")

    result = CliRunner().invoke(queue_daemon, ["stop"])

    assert result.exit_code == 1
    assert "Could not find queue daemon pid in file" in result.output


def test_stop_signals_recorded_pid(queue_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    _pid_path(queue_env).write_text("4321\n", encoding="ascii")
    sent: list[tuple[int, int]] = []
    _use_controller(
        monkeypatch,
        DaemonCliController(kill=lambda pid, signum: sent.append((pid, signum))),
    )

    result = CliRunner().invoke(queue_daemon, ["stop"])

    assert result.exit_code == 0, result.output
    assert "Sending SIGTERM to pid 4321" in result.output
    assert "Signal SIGTERM sent to pid 4321" in result.output
    assert sent == [(4321, signal.SIGTERM)]
    # The daemon removes its own pid file once it has drained.
    assert _pid_path(queue_env).exists()


def test_stop_with_vanished_process_removes_pid_file(
    queue_env: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _pid_path(queue_env).write_text("4321\n", encoding="ascii")

    def kill(pid: int, signum: int) -> None:
        raise ProcessLookupError(3, "No such process")

    _use_controller(monkeypatch, DaemonCliController(kill=kill))

    result = CliRunner().invoke(queue_daemon, ["stop"])

    assert result.exit_code == 1
    assert "An error occurred while sending SIGTERM" in result.output
    assert not _pid_path(queue_env).exists()


def test_status_reports_recorded_pid(queue_env: Path) -> None:
    _pid_path(queue_env).write_text(f"{os.getpid()}\n", encoding="ascii")

    result = CliRunner().invoke(queue_daemon, ["status"])

    assert result.exit_code == 0
    assert f"Queue daemon is running at PID: {os.getpid()}" in result.output
    assert "stale" not in result.output


def test_status_flags_stale_pid_file(queue_env: Path) -> None:
    stale_pid = _finished_pid()
    _pid_path(queue_env).write_text(f"{stale_pid}\n", encoding="ascii")

    result = CliRunner().invoke(queue_daemon, ["status"])

    assert result.exit_code == 0
    assert f"no process with PID {stale_pid}; pid file may be stale" in result.output


def _cli(*args: str) -> subprocess.CompletedProcess[str]:
    return subprocess.run(
        [sys.executable, "-m", "queue_daemon.main", *args],
        capture_output=True,
        text=True,
        timeout=60,
        check=False,
    )


def _wait_for(predicate, timeout: float = 30.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX fork/signals required")
def test_daemon_lifecycle_end_to_end(queue_env: Path) -> None:
    pid_path = _pid_path(queue_env)
    marks = queue_env / "marks.txt"

    started = _cli("start")
    assert started.returncode == 0, started.stdout + started.stderr
    assert "Queue daemon started at PID:" in started.stdout
    assert _wait_for(pid_path.exists)
    daemon_pid = int(pid_path.read_text(encoding="ascii"))
    try:
        for index in range(3):
            enqueued = _cli("enqueue", "touch", "-p", f"path={marks}", "-p", f"line=job-{index}")
            assert enqueued.returncode == 0, enqueued.stderr

        assert _wait_for(
            lambda: marks.exists() and len(marks.read_text(encoding="utf-8").splitlines()) == 3,
        )

        status = _cli("status")
        assert f"Queue daemon is running at PID: {daemon_pid}" in status.stdout

        stopped = _cli("stop")
        assert stopped.returncode == 0, stopped.stderr
        assert f"Signal SIGTERM sent to pid {daemon_pid}" in stopped.stdout
        assert _wait_for(lambda: not pid_path.exists())

        status = _cli("status")
        assert "Queue daemon is NOT running" in status.stdout
        assert "Queue has 0 tasks in queue" in status.stdout
        assert "Supervisor" in (queue_env / "queue-daemon.default.log").read_text(
            encoding="utf-8",
        )
    finally:
        if pid_path.exists():
            os.kill(daemon_pid, signal.SIGKILL)


def test_enqueue_reports_invalid_config(queue_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QUEUE_DAEMON_ROUTES", "mail=app.tasks.send_mail")

    result = CliRunner().invoke(queue_daemon, ["enqueue", "noop"])

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "Invalid QUEUE_DAEMON_ROUTES entry" in result.output
    assert "queue-daemon enqueue failed." in result.output


def test_tasks_reports_invalid_config(queue_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("QUEUE_DAEMON_SQLITE_BUSY_TIMEOUT_MS", "0")

    result = CliRunner().invoke(queue_daemon, ["tasks"])

    assert result.exit_code == 1
    assert isinstance(result.exception, SystemExit)
    assert "SQLITE_BUSY_TIMEOUT_MS must be > 0" in result.output
