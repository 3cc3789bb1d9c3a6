"""
Tests for merge validation, not-found handling, atomicity, retry and cancellation.
"""

import threading
import uuid

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from terroir.database import Bottle, Region, Wine, WineVintage
from terroir.errors import (
    MergeCancelledError,
    MergeFailedError,
    MergeValidationError,
    NotFoundError,
)
from terroir.repository import TerroirRepository
from terroir.retry import RetryError


@pytest.fixture
def bordeaux(catalogue):
    """Leader region plus two followers, each with a colliding appellation."""
    france = catalogue.country("France")
    leader = catalogue.region(france, "Bordeaux")
    first = catalogue.region(france, "Bordeaux 1")
    second = catalogue.region(france, "Bordeaux 2")
    for region in (leader, first, second):
        sub = catalogue.sub_appellation(catalogue.appellation(region, "Margaux"), "Cantenac")
        wine = catalogue.wine(sub, f"Chateau {region.name}")
        catalogue.bottles(catalogue.vintage(wine, 2015), 2)
    catalogue.commit()
    return leader, first, second


def _locked_error():
    return OperationalError("UPDATE regions SET name=?", {}, Exception("database is locked"))


class TestValidation:
    """Follower normalization and validation errors."""

    def test_no_followers(self, merger, bordeaux, store):
        leader, _, _ = bordeaux
        before = store.snapshot()

        with pytest.raises(MergeValidationError, match="Select at least two regions to merge."):
            merger.merge_regions(leader.id, [])

        assert store.snapshot() == before

    def test_only_leader_and_duplicates_of_leader(self, merger, bordeaux, store):
        leader, _, _ = bordeaux
        before = store.snapshot()

        with pytest.raises(MergeValidationError):
            merger.merge_regions(leader.id, [leader.id, leader.id.upper(), uuid.UUID(leader.id)])

        assert store.snapshot() == before

    def test_invalid_ids_are_ignored(self, merger, bordeaux):
        leader, _, _ = bordeaux

        with pytest.raises(MergeValidationError):
            merger.merge_regions(leader.id, ["", "not-a-uuid", str(uuid.UUID(int=0)), None])

    def test_duplicate_followers_counted_once(self, merger, bordeaux, store):
        leader, first, _ = bordeaux

        result = merger.merge_regions(leader.id, [first.id, first.id, first.id.upper()])

        assert result.followers_merged == 1
        assert store.get(Region, first.id) is None

    def test_validation_failure_is_recorded(self, merger, bordeaux, quiet_logger):
        leader, _, _ = bordeaux

        with pytest.raises(MergeValidationError):
            merger.merge_regions(leader.id, [leader.id])

        metrics = quiet_logger.get_metrics()
        assert metrics["merges_failed"] == 1
        assert metrics["errors_by_type"] == {"MergeValidationError": 1}


class TestNotFound:
    """Stale selections fail without touching the store."""

    def test_missing_leader(self, merger, bordeaux, store):
        _, first, _ = bordeaux
        before = store.snapshot()

        with pytest.raises(NotFoundError, match="Selected leading region could not be found."):
            merger.merge_regions(str(uuid.uuid4()), [first.id])

        assert store.snapshot() == before

    def test_follower_deleted_before_call(self, merger, bordeaux, store):
        leader, first, _ = bordeaux
        before = store.snapshot()

        with pytest.raises(NotFoundError, match="One or more regions selected for merge no longer exist."):
            merger.merge_regions(leader.id, [first.id, str(uuid.uuid4())])

        assert store.snapshot() == before

    def test_wrong_level_id_is_not_found(self, merger, bordeaux, store):
        leader, _, _ = bordeaux
        wine_id = store.rows(Wine)[0].id
        before = store.snapshot()

        with pytest.raises(NotFoundError):
            merger.merge_regions(leader.id, [wine_id])

        assert store.snapshot() == before


class TestAtomicity:
    """Failures anywhere inside the transaction leave no trace."""

    def test_failure_midway_rolls_back_everything(self, merger, bordeaux, store, monkeypatch):
        leader, first, second = bordeaux
        before = store.snapshot()
        original_delete = TerroirRepository.delete
        deletes = []

        def failing_delete(self, entity):
            deletes.append(entity)
            if isinstance(entity, Region) and entity.id == second.id:
                raise RuntimeError("disk on fire")
            return original_delete(self, entity)

        monkeypatch.setattr(TerroirRepository, "delete", failing_delete)

        with pytest.raises(MergeFailedError, match="couldn't merge the selected regions"):
            merger.merge_regions(leader.id, [first.id, second.id])

        assert len(deletes) > 1
        assert store.snapshot() == before

    def test_integrity_error_is_not_retried(self, merger, bordeaux, store, monkeypatch, quiet_logger):
        leader, first, _ = bordeaux
        before = store.snapshot()
        calls = []

        def broken_delete(self, entity):
            calls.append(entity)
            raise IntegrityError("DELETE FROM regions", {}, Exception("FOREIGN KEY constraint failed"))

        monkeypatch.setattr(TerroirRepository, "delete", broken_delete)

        with pytest.raises(MergeFailedError):
            merger.merge_regions(leader.id, [first.id])

        assert len(calls) == 1
        assert quiet_logger.get_metrics()["retries"] == 0
        assert store.snapshot() == before


class TestRetry:
    """Transient store errors re-run the whole merge from fresh state."""

    def test_transient_error_then_success(self, merger, bordeaux, store, monkeypatch, quiet_logger):
        leader, first, second = bordeaux
        original_delete = TerroirRepository.delete
        state = {"failed": False}

        def flaky_delete(self, entity):
            if not state["failed"] and isinstance(entity, Region):
                state["failed"] = True
                raise _locked_error()
            return original_delete(self, entity)

        monkeypatch.setattr(TerroirRepository, "delete", flaky_delete)

        result = merger.merge_regions(leader.id, [first.id, second.id])

        assert result.followers_merged == 2
        assert store.count(Region) == 1
        assert store.count(Bottle) == 6
        assert store.count(WineVintage) == 3
        assert quiet_logger.get_metrics()["retries"] == 1

    def test_retries_exhausted(self, merger, bordeaux, store, monkeypatch, settings):
        leader, first, _ = bordeaux
        before = store.snapshot()
        calls = []

        def locked_delete(self, entity):
            calls.append(entity)
            raise _locked_error()

        monkeypatch.setattr(TerroirRepository, "delete", locked_delete)

        with pytest.raises(MergeFailedError) as exc_info:
            merger.merge_regions(leader.id, [first.id])

        assert isinstance(exc_info.value.__cause__, RetryError)
        assert len(calls) == settings.merge_max_retries + 1
        assert store.snapshot() == before


class TestCancellation:
    """A set cancel event aborts and rolls back."""

    def test_cancelled_before_start(self, merger, bordeaux, store):
        leader, first, _ = bordeaux
        before = store.snapshot()
        cancel = threading.Event()
        cancel.set()

        with pytest.raises(MergeCancelledError):
            merger.merge_regions(leader.id, [first.id], cancel=cancel)

        assert store.snapshot() == before

    def test_cancelled_midway(self, merger, bordeaux, store, monkeypatch):
        leader, first, second = bordeaux
        before = store.snapshot()
        cancel = threading.Event()
        original_reparent = TerroirRepository.reparent

        def reparent_then_cancel(self, child, parent_column, parent_id):
            original_reparent(self, child, parent_column, parent_id)
            cancel.set()

        monkeypatch.setattr(TerroirRepository, "reparent", reparent_then_cancel)

        with pytest.raises(MergeCancelledError):
            merger.merge_regions(leader.id, [first.id, second.id], cancel=cancel)

        assert store.snapshot() == before
