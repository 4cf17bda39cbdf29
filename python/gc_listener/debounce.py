"""
Coalesce bursts of registry delete notifications into one delayed action.

A bulk delete makes the registry send one notification per manifest. The
first notification schedules the action after a fixed window; any
notification arriving while that action is pending is absorbed. The window
runs from the first notification of a burst and is not extended by later
ones.
"""

import threading
from typing import Callable, Optional

from gc_listener.logging_utils import get_logger, log_exception

logger = get_logger(__name__)


class DebounceCoalescer:
    """Run an action once per burst of notify() calls."""

    def __init__(self, action: Callable[[], object], window: float = 60.0,
                 shutdown: Optional[threading.Event] = None, name: str = "gc"):
        self.action = action
        self.window = window
        self.shutdown = shutdown or threading.Event()
        self.name = name
        self._lock = threading.Lock()
        self._pending = False

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending

    def notify(self) -> bool:
        """Schedule the action unless one is already pending.

        Returns:
            True if this call scheduled a new action, False if it was absorbed.
        """
        with self._lock:
            if self._pending:
                return False
            self._pending = True

        logger.info("[hook] %s in %ss", self.name.upper(), self.window)
        thread = threading.Thread(target=self._fire, name=f"debounce-{self.name}", daemon=True)
        thread.start()
        return True

    def _fire(self) -> None:
        try:
            # wait() returns True only when shutdown was signalled
            if not self.shutdown.wait(self.window):
                self.action()
        except Exception as e:
            log_exception(logger, f"[hook] {self.name} action failed", e)
        finally:
            with self._lock:
                self._pending = False
