"""
Periodic prune+GC scheduler.

Runs never overlap: tick() takes a non-blocking run guard and skips when a
run (periodic or manual) is still in progress.
"""

import threading
from typing import Callable, Optional

from gc_listener.logging_utils import get_logger, log_exception

logger = get_logger(__name__)


class PeriodicScheduler:
    """Call a job every `period` seconds until shutdown, one run at a time."""

    def __init__(self, job: Callable[[], object], period: float,
                 shutdown: Optional[threading.Event] = None, name: str = "prune"):
        self.job = job
        self.period = period
        self.shutdown = shutdown or threading.Event()
        self.name = name
        self._run_guard = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        """True while a run is in progress."""
        return self._run_guard.locked()

    def start(self) -> bool:
        """Start the timer loop. Returns False when periodic runs are disabled."""
        if self.period <= 0:
            logger.info("periodic %s disabled (interval <= 0)", self.name)
            return False
        if self._thread is not None and self._thread.is_alive():
            return True

        logger.info("periodic %s every %ss", self.name, self.period)
        self._thread = threading.Thread(target=self._loop, name=f"scheduler-{self.name}", daemon=True)
        self._thread.start()
        return True

    def stop(self) -> None:
        self.shutdown.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None:
            self._thread.join(timeout)

    def _loop(self) -> None:
        # wait() returns True only when shutdown was signalled
        while not self.shutdown.wait(self.period):
            self.tick()

    def tick(self):
        """Run the job now unless a run is already in progress.

        Returns:
            The job's return value, or None if the tick was skipped or failed.
        """
        if not self._run_guard.acquire(blocking=False):
            logger.warning("%s still running; tick skipped", self.name)
            return None
        try:
            return self.job()
        except Exception as e:
            log_exception(logger, f"{self.name} run failed", e)
            return None
        finally:
            self._run_guard.release()

    def trigger_now(self) -> bool:
        """Run the job once on a background thread (manual trigger).

        Returns:
            False if a run is already in progress and nothing was started.
        """
        if self.running:
            logger.info("%s already running; manual trigger ignored", self.name)
            return False
        thread = threading.Thread(target=self.tick, name=f"manual-{self.name}", daemon=True)
        thread.start()
        return True
