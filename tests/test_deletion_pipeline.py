"""Unit tests for gc_listener/deletion_pipeline.py"""

import threading
import time
from unittest.mock import MagicMock

import pytest

from gc_listener.deletion_pipeline import DeletionPipeline
from gc_listener.error_utils import ProtocolError
from gc_listener.retention import DeleteJob


def _jobs(count, repository="app"):
    return [DeleteJob(repository, f"t{i}", f"sha256:{i}") for i in range(count)]


class TestDeletionPipeline:
    """Tests for the bounded deletion worker pool"""

    def test_deletes_every_job(self):
        client = MagicMock()
        client.delete_manifest.return_value = True

        result = DeletionPipeline(client, workers=4).run(_jobs(10))

        assert result.attempted == 10
        assert result.succeeded == 10
        assert result.failed == 0
        deleted = sorted(call.args for call in client.delete_manifest.call_args_list)
        assert deleted == sorted(("app", f"sha256:{i}") for i in range(10))

    def test_failed_job_does_not_stop_siblings(self):
        client = MagicMock()

        def delete(repository, digest):
            if digest == "sha256:3":
                raise ProtocolError("Registry returned status 500", status_code=500)
            return True

        client.delete_manifest.side_effect = delete

        result = DeletionPipeline(client, workers=2).run(_jobs(6))

        assert result.attempted == 6
        assert result.succeeded == 5
        assert result.failed == 1
        assert result.failures == [("app", "t3", "Registry returned status 500")]

    def test_empty_job_stream(self):
        client = MagicMock()

        result = DeletionPipeline(client, workers=3).run([])

        assert result.attempted == 0
        client.delete_manifest.assert_not_called()

    def test_concurrency_is_bounded_by_worker_count(self):
        lock = threading.Lock()
        active = {"now": 0, "max": 0}

        def delete(repository, digest):
            with lock:
                active["now"] += 1
                active["max"] = max(active["max"], active["now"])
            time.sleep(0.02)
            with lock:
                active["now"] -= 1
            return True

        client = MagicMock()
        client.delete_manifest.side_effect = delete

        result = DeletionPipeline(client, workers=3).run(_jobs(12))

        assert result.succeeded == 12
        assert 1 <= active["max"] <= 3

    def test_workers_consume_while_producer_is_still_producing(self):
        first_deleted = threading.Event()
        observed = {}

        client = MagicMock()

        def delete(repository, digest):
            if digest == "sha256:first":
                first_deleted.set()
            return True

        client.delete_manifest.side_effect = delete

        def producer():
            yield DeleteJob("A", "old", "sha256:first")
            # Still producing: the first job must be handled before we continue
            observed["overlap"] = first_deleted.wait(timeout=5)
            yield DeleteJob("B", "old", "sha256:second")

        result = DeletionPipeline(client, workers=2).run(producer())

        assert observed["overlap"] is True
        assert result.succeeded == 2

    def test_no_jobs_dispatched_after_shutdown(self):
        client = MagicMock()
        shutdown = threading.Event()
        shutdown.set()

        result = DeletionPipeline(client, workers=2, shutdown=shutdown).run(_jobs(5))

        assert result.attempted == 0
        client.delete_manifest.assert_not_called()

    def test_shutdown_mid_run_discards_queued_jobs(self):
        shutdown = threading.Event()
        client = MagicMock()

        def delete(repository, digest):
            shutdown.set()
            return True

        client.delete_manifest.side_effect = delete

        result = DeletionPipeline(client, workers=1, shutdown=shutdown).run(_jobs(5))

        # the in-flight job completes, nothing after it is dispatched
        assert result.attempted == 1
        assert client.delete_manifest.call_count == 1

    def test_producer_error_still_closes_workers(self):
        client = MagicMock()

        def producer():
            yield DeleteJob("A", "t", "sha256:a")
            raise RuntimeError("listing blew up")

        with pytest.raises(RuntimeError):
            DeletionPipeline(client, workers=2).run(producer())

    def test_rejects_empty_pool(self):
        with pytest.raises(ValueError):
            DeletionPipeline(MagicMock(), workers=0)
