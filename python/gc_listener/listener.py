"""
Wires the listener together around one shutdown event.

    notifications --> DebounceCoalescer --------------------+
    timer / manual --> PeriodicScheduler --> Orchestrator --+--> RegistryGarbageCollector
"""

import threading
from typing import Any, Dict, Optional

from gc_listener.debounce import DebounceCoalescer
from gc_listener.logging_utils import get_logger, log_exception
from gc_listener.orchestrator import Orchestrator
from gc_listener.registry_client import RegistryClient
from gc_listener.registry_maintenance import RegistryGarbageCollector
from gc_listener.scheduler import PeriodicScheduler

logger = get_logger(__name__)


class GCListener:
    """Owns every long-lived component and the process-wide shutdown event."""

    def __init__(self, client, collector, orchestrator, scheduler, debouncer,
                 shutdown: threading.Event):
        self.client = client
        self.collector = collector
        self.orchestrator = orchestrator
        self.scheduler = scheduler
        self.debouncer = debouncer
        self.shutdown = shutdown

    @classmethod
    def from_config(cls, config_manager, shutdown: Optional[threading.Event] = None) -> "GCListener":
        shutdown = shutdown or threading.Event()
        client = RegistryClient.from_config(config_manager, shutdown=shutdown)
        collector = RegistryGarbageCollector.from_config(config_manager, shutdown=shutdown)
        orchestrator = Orchestrator.from_config(config_manager, client, collector, shutdown=shutdown)
        scheduler = PeriodicScheduler(
            orchestrator.prune_and_reclaim,
            period=config_manager.get_prune_interval(),
            shutdown=shutdown,
        )
        debouncer = DebounceCoalescer(
            collector.run,
            window=config_manager.get_gc_debounce(),
            shutdown=shutdown,
        )
        return cls(client, collector, orchestrator, scheduler, debouncer, shutdown)

    def start(self) -> None:
        self.scheduler.start()

    def stop(self) -> None:
        if not self.shutdown.is_set():
            logger.info("shutdown requested")
        self.shutdown.set()

    def notify_delete(self) -> bool:
        """A delete notification arrived; schedule a debounced GC."""
        return self.debouncer.notify()

    def trigger_gc(self) -> None:
        """Run GC on a background thread without waiting for it."""
        thread = threading.Thread(target=self._run_gc, name="manual-gc", daemon=True)
        thread.start()

    def _run_gc(self) -> None:
        try:
            self.collector.run()
        except Exception as e:
            log_exception(logger, "manual GC failed", e)

    def trigger_prune(self) -> bool:
        """Run prune+GC on a background thread; False if a prune is already running."""
        return self.scheduler.trigger_now()

    def status(self) -> Dict[str, Any]:
        last = self.collector.last_result
        return {
            "gc_pending": self.debouncer.pending,
            "gc_running": self.collector.running,
            "prune_running": self.scheduler.running,
            "last_gc": None if last is None else {"success": last[0], "finished_at": last[1]},
            "shutting_down": self.shutdown.is_set(),
        }
