"""
Bounded worker pool that deletes manifests produced by the retention policy.

The caller's thread is the single producer: it walks the (lazy) job iterable
and hands every job to a queue drained by a fixed number of workers, so
planning for one repository overlaps with deletions for earlier ones. When
the iterable is exhausted the queue is closed with one sentinel per worker;
the run is complete once every worker future has returned.
"""

import queue
import threading
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple

from gc_listener.logging_utils import get_logger
from gc_listener.retention import DeleteJob

logger = get_logger(__name__)

_CLOSED = object()


@dataclass
class PipelineResult:
    """Counters for one pipeline run."""

    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    # (repository, tag, cause)
    failures: List[Tuple[str, str, str]] = field(default_factory=list)


class DeletionPipeline:
    """Delete manifests concurrently, isolating failures per job."""

    def __init__(self, client, workers: int = 8, shutdown: Optional[threading.Event] = None):
        if workers < 1:
            raise ValueError(f"workers must be a positive integer, got: {workers}")
        self.client = client
        self.workers = workers
        self.shutdown = shutdown or threading.Event()
        self._lock = threading.Lock()

    def run(self, jobs: Iterable[DeleteJob]) -> PipelineResult:
        """Drain jobs through the worker pool and return the counters.

        Blocks until every worker has observed the closed queue.
        """
        result = PipelineResult()
        job_queue: "queue.Queue" = queue.Queue()

        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="prune-worker") as executor:
            futures = [executor.submit(self._worker, job_queue, result) for _ in range(self.workers)]
            try:
                for job in jobs:
                    if self.shutdown.is_set():
                        logger.info("Shutdown requested; no further delete jobs are queued")
                        break
                    job_queue.put(job)
            finally:
                for _ in range(self.workers):
                    job_queue.put(_CLOSED)
                wait(futures)

        for future in futures:
            future.result()
        return result

    def _worker(self, job_queue: "queue.Queue", result: PipelineResult) -> None:
        while True:
            job = job_queue.get()
            if job is _CLOSED:
                return
            if self.shutdown.is_set():
                # Discard the rest of the queue; keep reading until our sentinel
                continue
            self._delete(job, result)

    def _delete(self, job: DeleteJob, result: PipelineResult) -> None:
        try:
            self.client.delete_manifest(job.repository, job.digest)
        except Exception as e:
            cause = getattr(e, "message", None) or str(e)
            logger.warning("[%s:%s] delete: %s", job.repository, job.tag, cause)
            with self._lock:
                result.attempted += 1
                result.failed += 1
                result.failures.append((job.repository, job.tag, cause))
            return

        logger.debug("[%s:%s] deleted", job.repository, job.tag)
        with self._lock:
            result.attempted += 1
            result.succeeded += 1
