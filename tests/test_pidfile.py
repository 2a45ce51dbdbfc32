from __future__ import annotations

import os
from pathlib import Path

import allure
import pytest

from queue_daemon.daemon.pidfile import PidFileError, ProcessIdentityFile

pytestmark = [
    allure.epic("Queue Daemon"),
    allure.feature("Process Identity File"),
]


def test_write_read_remove(tmp_path: Path) -> None:
    pid_file = ProcessIdentityFile(tmp_path / "run" / "daemon.pid")

    pid_file.write(4321)

    assert pid_file.exists()
    assert (tmp_path / "run" / "daemon.pid").read_text(encoding="ascii") == "4321\n"
    assert pid_file.read() == 4321
    assert pid_file.remove() is True
    assert pid_file.remove() is False
    assert not pid_file.exists()


def test_missing_file_reads_as_none(tmp_path: Path) -> None:
    assert ProcessIdentityFile(tmp_path / "daemon.pid").read() is None


@pytest.mark.parametrize("content", ["", "abc", "0", "-12"])
def test_invalid_content_is_reported(tmp_path: Path, content: str) -> None:
    path = tmp_path / "daemon.pid"
    path.write_text(content, encoding="ascii")

    with pytest.raises(PidFileError, match="Could not find queue daemon pid"):
        ProcessIdentityFile(path).read()


def test_refuses_to_write_invalid_pid(tmp_path: Path) -> None:
    with pytest.raises(PidFileError):
        ProcessIdentityFile(tmp_path / "daemon.pid").write(0)


def test_liveness_follows_recorded_pid(tmp_path: Path) -> None:
    pid_file = ProcessIdentityFile(tmp_path / "daemon.pid")
    assert pid_file.is_process_alive() is False

    pid_file.write(os.getpid())
    assert pid_file.is_process_alive() is True

    (tmp_path / "daemon.pid").write_text("garbage", encoding="ascii")
    assert pid_file.is_process_alive() is False
