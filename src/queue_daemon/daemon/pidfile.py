"""Process identity file used by external stop/status control."""

from __future__ import annotations

import os
from pathlib import Path


class PidFileError(ValueError):
    """The pid file exists but does not hold a usable process id."""


class ProcessIdentityFile:
    """Plaintext file holding the supervisor's decimal pid.

    Absence of the file means the daemon is not running.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def exists(self) -> bool:
        return self.path.exists()

    def write(self, pid: int) -> None:
        if pid <= 0:
            raise PidFileError(f"Refusing to record invalid pid {pid!r} in {self.path}")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f"{self.path.name}.{os.getpid()}.tmp")
        tmp_path.write_text(f"{pid}\n", encoding="ascii")
        os.replace(tmp_path, self.path)

    def read(self) -> int | None:
        """Return the recorded pid, or None when the file does not exist."""

        try:
            raw = self.path.read_text(encoding="ascii").strip()
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as error:
            raise PidFileError(f"Could not find queue daemon pid in file: {self.path}") from error
        try:
            pid = int(raw)
        except ValueError as error:
            raise PidFileError(f"Could not find queue daemon pid in file: {self.path}") from error
        if pid <= 0:
            raise PidFileError(f"Could not find queue daemon pid in file: {self.path}")
        return pid

    def remove(self) -> bool:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        return True

    def is_process_alive(self) -> bool:
        """True if the file names a process that currently exists."""

        try:
            pid = self.read()
        except PidFileError:
            return False
        if pid is None:
            return False
        return process_exists(pid)


def process_exists(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
