"""Bounded drain of live workers on supervisor shutdown."""

from __future__ import annotations

import logging
import os
import signal
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from queue_daemon.daemon.pool import WorkerPool
from queue_daemon.daemon.signals import SignalBridge

logger = logging.getLogger(__name__)

DEFAULT_DRAIN_ATTEMPTS = 5
DEFAULT_DRAIN_RETRY_DELAY_SECONDS = 1.0


@dataclass(slots=True)
class DrainReport:
    """Outcome of one drain."""

    attempts: int = 0
    signals_sent: int = 0
    residual_pids: set[int] = field(default_factory=set)

    @property
    def clean(self) -> bool:
        return not self.residual_pids


class ShutdownCoordinator:
    """Signals every live worker until the pool empties or attempts run out."""

    def __init__(
        self,
        *,
        pool: WorkerPool,
        signals: SignalBridge,
        kill: Callable[[int, int], None] = os.kill,
    ) -> None:
        self.pool = pool
        self.signals = signals
        self._kill = kill

    def drain(
        self,
        max_attempts: int = DEFAULT_DRAIN_ATTEMPTS,
        retry_delay: float = DEFAULT_DRAIN_RETRY_DELAY_SECONDS,
    ) -> DrainReport:
        report = DrainReport()
        self.signals.reap_children(self.pool)
        while report.attempts < max_attempts and len(self.pool):
            report.attempts += 1
            report.signals_sent += self._terminate_all()
            self._wait_and_reap(retry_delay)

        report.residual_pids = self.pool.active_pids()
        if report.residual_pids:
            logger.error(
                "Could not terminate all workers after %s attempts: %s",
                report.attempts,
                ", ".join(str(pid) for pid in sorted(report.residual_pids)),
            )
        else:
            logger.info("All workers terminated (attempts=%s)", report.attempts)
        return report

    def _terminate_all(self) -> int:
        sent = 0
        for pid in sorted(self.pool.active_pids()):
            try:
                self._kill(pid, signal.SIGTERM)
            except ProcessLookupError:
                # Already gone and collected elsewhere.
                self.pool.reap(pid)
                continue
            except PermissionError:
                logger.warning("Not permitted to signal worker pid=%s", pid)
                continue
            sent += 1
        return sent

    def _wait_and_reap(self, retry_delay: float) -> None:
        deadline = time.monotonic() + retry_delay
        while True:
            self.signals.reap_children(self.pool)
            if not len(self.pool):
                return
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return
            self.signals.wait(remaining)
