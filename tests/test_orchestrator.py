"""Tests for the prune+GC sequence (gc_listener/orchestrator.py)"""

import threading
from unittest.mock import MagicMock

import pytest

from gc_listener.orchestrator import Orchestrator


@pytest.fixture
def collector():
    collector = MagicMock()
    collector.run.return_value = True
    return collector


class TestPruneAndReclaim:
    """End-to-end runs against the in-memory registry"""

    def test_keeps_newest_tags_and_reclaims_once(self, fake_registry_factory, collector):
        registry = fake_registry_factory({
            "app": {"v3": "sha256:3", "v2": "sha256:2", "v1": "sha256:1"},
        })

        outcome = Orchestrator(registry, collector, keep_n=2, workers=2).prune_and_reclaim()

        assert sorted(registry.list_tags("app")) == ["v2", "v3"]
        assert registry.deleted == [("app", "sha256:1")]
        assert collector.run.call_count == 1
        assert outcome.pruned is True
        assert outcome.reclaimed is True
        assert outcome.attempted == 1
        assert outcome.succeeded == 1

    def test_listing_failure_isolated_to_one_repository(self, fake_registry_factory, collector):
        registry = fake_registry_factory({
            "A": {"v2": "sha256:a2", "v1": "sha256:a1"},
            "B": {"v2": "sha256:b2", "v1": "sha256:b1"},
            "C": {"v2": "sha256:c2", "v1": "sha256:c1"},
        })
        registry.fail_list_tags.add("B")

        outcome = Orchestrator(registry, collector, keep_n=1, workers=3).prune_and_reclaim()

        assert sorted(registry.deleted) == [("A", "sha256:a1"), ("C", "sha256:c1")]
        assert outcome.skipped_repositories == ["B"]
        assert outcome.repositories == 3
        assert collector.run.call_count == 1

    def test_delete_failure_is_counted_and_gc_still_runs(self, fake_registry_factory, collector):
        registry = fake_registry_factory({
            "app": {"v3": "sha256:3", "v2": "sha256:2", "v1": "sha256:1"},
        })
        registry.fail_delete.add("sha256:2")

        outcome = Orchestrator(registry, collector, keep_n=1).prune_and_reclaim()

        assert outcome.attempted == 2
        assert outcome.succeeded == 1
        assert outcome.failed == 1
        assert sorted(registry.list_tags("app")) == ["v2", "v3"]
        collector.run.assert_called_once()

    def test_repositories_within_keep_n_are_untouched(self, fake_registry_factory, collector):
        registry = fake_registry_factory({
            "small": {"v1": "sha256:1"},
            "empty": {},
        })

        outcome = Orchestrator(registry, collector, keep_n=5).prune_and_reclaim()

        assert registry.deleted == []
        assert outcome.attempted == 0
        assert outcome.reclaimed is True

    @pytest.mark.parametrize("keep_n", [0, -3])
    def test_non_positive_keep_n_only_reclaims(self, fake_registry_factory, collector, keep_n):
        registry = fake_registry_factory({"app": {"v2": "sha256:2", "v1": "sha256:1"}})

        outcome = Orchestrator(registry, collector, keep_n=keep_n).prune_and_reclaim()

        assert outcome.pruned is False
        assert registry.deleted == []
        collector.run.assert_called_once()

    def test_missing_credentials_only_reclaims(self, fake_registry_factory, collector):
        registry = fake_registry_factory({"app": {"v2": "sha256:2", "v1": "sha256:1"}}, username=None)

        outcome = Orchestrator(registry, collector, keep_n=1).prune_and_reclaim()

        assert outcome.pruned is False
        assert registry.deleted == []
        collector.run.assert_called_once()

    def test_catalog_failure_still_reclaims(self, fake_registry_factory, collector):
        registry = fake_registry_factory({"app": {"v2": "sha256:2", "v1": "sha256:1"}})
        registry.fail_catalog = True

        outcome = Orchestrator(registry, collector, keep_n=1).prune_and_reclaim()

        assert outcome.pruned is False
        assert registry.deleted == []
        collector.run.assert_called_once()

    def test_failed_reclamation_is_reported(self, fake_registry_factory, collector):
        collector.run.return_value = False
        registry = fake_registry_factory({})

        outcome = Orchestrator(registry, collector, keep_n=1).prune_and_reclaim()

        assert outcome.reclaimed is False

    def test_no_deletes_after_shutdown(self, fake_registry_factory, collector):
        registry = fake_registry_factory({"app": {"v2": "sha256:2", "v1": "sha256:1"}})
        shutdown = threading.Event()
        shutdown.set()

        Orchestrator(registry, collector, keep_n=1, shutdown=shutdown).prune_and_reclaim()

        assert registry.deleted == []

    def test_from_config(self, fake_registry_factory, collector):
        cm = MagicMock()
        cm.get_keep_n.return_value = 4
        cm.get_workers.return_value = 3

        orchestrator = Orchestrator.from_config(cm, fake_registry_factory({}), collector)

        assert orchestrator.keep_n == 4
        assert orchestrator.workers == 3
