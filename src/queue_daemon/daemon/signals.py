"""Bridge between asynchronous OS signals and the supervisor loop."""

from __future__ import annotations

import logging
import os
import select
import signal
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime

from queue_daemon.daemon.pool import WorkerPool

logger = logging.getLogger(__name__)

_TERMINATE_SIGNALS = (signal.SIGTERM, signal.SIGINT)


@dataclass(slots=True)
class ReapedWorker:
    """One child collected by ``waitpid``."""

    pid: int
    exit_code: int
    started_at: datetime | None


class SignalBridge:
    """Turns SIGCHLD and SIGTERM/SIGINT into flags checked by the loop.

    Handlers only flip booleans; reaping and pool mutation happen when the loop
    calls :meth:`reap_children`. A self-pipe registered with
    ``signal.set_wakeup_fd`` lets :meth:`wait` return as soon as any signal is
    delivered.
    """

    def __init__(self) -> None:
        self._child_exited = False
        self._terminate_requested = False
        self._signal_name: str | None = None
        self._wakeup_read: int | None = None
        self._wakeup_write: int | None = None
        self._installed = False

    @property
    def terminate_requested(self) -> bool:
        return self._terminate_requested

    @property
    def signal_name(self) -> str | None:
        return self._signal_name

    @property
    def installed_handlers(self) -> bool:
        return self._installed

    def request_terminate(self, signal_name: str = "manual") -> None:
        self._terminate_requested = True
        self._signal_name = signal_name

    @contextmanager
    def installed(self) -> Iterator[None]:
        read_fd, write_fd = os.pipe()
        os.set_blocking(read_fd, False)
        os.set_blocking(write_fd, False)
        originals = {
            signum: signal.getsignal(signum)
            for signum in (signal.SIGCHLD, *_TERMINATE_SIGNALS)
        }
        try:
            previous_wakeup = signal.set_wakeup_fd(write_fd)
        except ValueError:
            # Signal handlers can only be installed in main thread; the loop
            # falls back to polling waitpid on every tick.
            os.close(read_fd)
            os.close(write_fd)
            yield
            return

        self._wakeup_read = read_fd
        self._wakeup_write = write_fd
        try:
            signal.signal(signal.SIGCHLD, self._handle_signal)
            for signum in _TERMINATE_SIGNALS:
                signal.signal(signum, self._handle_signal)
            self._installed = True
            yield
        finally:
            self._installed = False
            for signum, handler in originals.items():
                signal.signal(signum, handler)
            signal.set_wakeup_fd(previous_wakeup)
            self._close_wakeup_pipe()

    def reset_in_child(self) -> None:
        """Restore default dispositions in a freshly forked worker."""

        signal.signal(signal.SIGCHLD, signal.SIG_DFL)
        signal.signal(signal.SIGTERM, signal.SIG_DFL)
        signal.signal(signal.SIGINT, signal.default_int_handler)
        if self._installed:
            signal.set_wakeup_fd(-1)
        self._installed = False
        self._close_wakeup_pipe()
        self._child_exited = False
        self._terminate_requested = False
        self._signal_name = None

    def wait(self, timeout: float) -> None:
        """Sleep up to ``timeout`` seconds, returning early on signal delivery."""

        if timeout <= 0:
            return
        if self._child_exited:
            return
        if self._wakeup_read is None:
            time.sleep(timeout)
            return
        readable, _, _ = select.select([self._wakeup_read], [], [], timeout)
        if readable:
            self._drain_wakeup_pipe()

    def reap_children(self, pool: WorkerPool) -> list[ReapedWorker]:
        """Collect every exited child and drop it from the pool."""

        if self._installed and not self._child_exited:
            return []
        self._child_exited = False

        reaped: list[ReapedWorker] = []
        while True:
            try:
                pid, status = os.waitpid(-1, os.WNOHANG)
            except ChildProcessError:
                break
            if pid == 0:
                break
            exit_code = os.waitstatus_to_exitcode(status)
            started_at = pool.reap(pid)
            reaped.append(ReapedWorker(pid=pid, exit_code=exit_code, started_at=started_at))
            if started_at is None:
                logger.debug("Reaped unknown child pid=%s exit_code=%s", pid, exit_code)
            else:
                logger.debug("Worker pid=%s exited with code %s", pid, exit_code)
        return reaped

    def _handle_signal(self, signum: int, _: object | None) -> None:
        if signum == signal.SIGCHLD:
            self._child_exited = True
            return
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        self._terminate_requested = True
        self._signal_name = name

    def _drain_wakeup_pipe(self) -> None:
        if self._wakeup_read is None:
            return
        while True:
            try:
                if not os.read(self._wakeup_read, 512):
                    return
            except BlockingIOError:
                return

    def _close_wakeup_pipe(self) -> None:
        for fd in (self._wakeup_read, self._wakeup_write):
            if fd is not None:
                os.close(fd)
        self._wakeup_read = None
        self._wakeup_write = None
