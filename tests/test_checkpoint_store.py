from __future__ import annotations

import json

import pytest

from models.session import Checkpoint, ListingStage, PendingUpdate
from storage.checkpoint_store import CheckpointStore


@pytest.fixture
def store(tmp_path) -> CheckpointStore:
    return CheckpointStore(str(tmp_path))


def test_checkpoint_survives_a_reload(store, tmp_path):
    store.save_checkpoint(Checkpoint(session_id="s1", items=["A", "B", "C"], next_index=1, tab_id=9))

    on_disk = json.loads((tmp_path / "s1.checkpoint.json").read_text())
    assert on_disk["nextIndex"] == 1
    assert on_disk["items"] == ["A", "B", "C"]

    # A fresh store (new page) sees the same progress.
    restored = CheckpointStore(str(tmp_path)).load_checkpoint("s1")
    assert restored.next_index == 1
    assert restored.tab_id == 9
    assert restored.previous_index == 0
    assert restored.items[restored.previous_index] == "A"
    assert restored.has_unrecorded_outcome()
    assert not restored.finished


def test_recorded_outcome_is_not_reported_again():
    checkpoint = Checkpoint(session_id="s1", items=["A", "B"], next_index=1, last_recorded_index=0)
    assert not checkpoint.has_unrecorded_outcome()

    fresh = Checkpoint(session_id="s1", items=["A", "B"], next_index=0)
    assert not fresh.has_unrecorded_outcome()

    done = Checkpoint(session_id="s1", items=["A", "B"], next_index=2, last_recorded_index=0)
    assert done.finished
    assert done.has_unrecorded_outcome()


def test_missing_and_deleted_records(store):
    assert store.load_checkpoint("nobody") is None

    store.save_checkpoint(Checkpoint(session_id="s1", items=["A"]))
    store.delete_checkpoint("s1")
    store.delete_checkpoint("s1")

    assert store.load_checkpoint("s1") is None


def test_corrupt_record_is_discarded(store, tmp_path):
    (tmp_path / "s2.checkpoint.json").write_text("{not json")

    assert store.load_checkpoint("s2") is None
    assert not (tmp_path / "s2.checkpoint.json").exists()


def test_pending_update_round_trip(store):
    store.save_pending(PendingUpdate(session_id="s3", pending_identifier="111"))
    pending = store.load_pending("s3")
    assert pending.stage == ListingStage.SEARCH

    pending.stage = ListingStage.SAVED
    store.save_pending(pending)
    assert store.load_pending("s3").stage == ListingStage.SAVED


def test_discard_and_purge(store):
    store.save_checkpoint(Checkpoint(session_id="live", items=["A"]))
    store.save_checkpoint(Checkpoint(session_id="old", items=["A"]))
    store.save_pending(PendingUpdate(session_id="older", pending_identifier="1"))

    assert store.session_ids() == ["live", "old", "older"]
    assert store.purge_stale(["live"]) == 2
    assert store.session_ids() == ["live"]

    store.discard("live")
    assert store.session_ids() == []


def test_unsafe_session_id_rejected(store):
    with pytest.raises(ValueError):
        store.load_checkpoint("../..")
