"""
Prune + GC sequence shared by the periodic scheduler, the /prune endpoint
and the CLI.
"""

import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional

from gc_listener.deletion_pipeline import DeletionPipeline
from gc_listener.logging_utils import get_logger
from gc_listener.retention import plan_deletions

logger = get_logger(__name__)


@dataclass
class RunOutcome:
    """What one prune+GC run did. Used for logging and API responses only."""

    repositories: int = 0
    skipped_repositories: List[str] = field(default_factory=list)
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    pruned: bool = False
    reclaimed: bool = False
    duration_seconds: float = 0.0


class Orchestrator:
    """Retention policy -> deletion pipeline -> garbage collection."""

    def __init__(self, client, collector, keep_n: int, workers: int = 8,
                 shutdown: Optional[threading.Event] = None):
        self.client = client
        self.collector = collector
        self.keep_n = keep_n
        self.workers = workers
        self.shutdown = shutdown or threading.Event()

    @classmethod
    def from_config(cls, config_manager, client, collector,
                    shutdown: Optional[threading.Event] = None) -> "Orchestrator":
        return cls(
            client,
            collector,
            keep_n=config_manager.get_keep_n(),
            workers=config_manager.get_workers(),
            shutdown=shutdown,
        )

    def reclaim(self) -> bool:
        return self.collector.run()

    def prune_and_reclaim(self) -> RunOutcome:
        """Prune old tags when possible, then always run garbage collection."""
        started = time.monotonic()
        outcome = RunOutcome()

        if self.keep_n <= 0:
            logger.info("prune disabled (KEEP_N<=0)")
        elif not self.client.has_credentials():
            logger.warning("prune skipped: REGISTRY_USER/REGISTRY_PASS not set")
        else:
            self._prune(outcome)

        outcome.reclaimed = self.reclaim()
        outcome.duration_seconds = time.monotonic() - started
        logger.info(
            "prune+GC finished in %.1fs: %d repos (%d skipped), %d deleted, %d failed, GC %s",
            outcome.duration_seconds,
            outcome.repositories,
            len(outcome.skipped_repositories),
            outcome.succeeded,
            outcome.failed,
            "ok" if outcome.reclaimed else "failed",
        )
        return outcome

    def _prune(self, outcome: RunOutcome) -> None:
        try:
            repositories = self.client.list_repositories()
        except Exception as e:
            logger.warning("prune: %s", getattr(e, "message", e))
            return

        logger.info("catalog: %d repos", len(repositories))
        outcome.pruned = True
        outcome.repositories = len(repositories)

        jobs = plan_deletions(
            self.client,
            repositories,
            self.keep_n,
            shutdown=self.shutdown,
            on_skip=lambda repository, _error: outcome.skipped_repositories.append(repository),
        )
        result = DeletionPipeline(self.client, workers=self.workers, shutdown=self.shutdown).run(jobs)

        outcome.attempted = result.attempted
        outcome.succeeded = result.succeeded
        outcome.failed = result.failed
