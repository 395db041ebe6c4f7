from __future__ import annotations

import pytest

from models.session import SessionKind, SessionResponse
from orchestration.registry import SessionRegistry


async def test_finish_resolves_once_and_runs_cleanups():
    registry = SessionRegistry()
    session = registry.create(SessionKind.FAN_OUT, ["SiteX"])
    calls = []
    registry.add_cleanup(session.id, lambda: calls.append("poll"))
    registry.add_cleanup(session.id, lambda: calls.append("timeout"))

    assert registry.finish(session.id, SessionResponse.completed([{"price": 1}]))
    assert not registry.finish(session.id, SessionResponse.failed("late timeout"))

    response = await session.response
    assert response.success and response.results == [{"price": 1}]
    assert calls == ["poll", "timeout"]
    assert session.id not in registry


async def test_results_after_finish_are_dropped():
    registry = SessionRegistry()
    session = registry.create(SessionKind.FAN_OUT, ["SiteX", "SiteY"])
    registry.finish(session.id, SessionResponse.timed_out([]))

    assert not registry.append_results(session.id, [{"price": 2}], "SiteY")
    assert not registry.record_item(session.id, 0, {"barcode": "A"})


async def test_duplicate_target_delivery_is_counted_once():
    registry = SessionRegistry()
    session = registry.create(SessionKind.FAN_OUT, ["SiteX", "SiteY"])

    assert registry.append_results(session.id, [{"price": 1}], "SiteX")
    assert not registry.append_results(session.id, [{"price": 1}], "SiteX")

    assert session.completed_count == 1
    assert not session.done
    assert session.results == [{"price": 1}]


async def test_sequential_results_follow_item_order():
    registry = SessionRegistry()
    session = registry.create(SessionKind.SEQUENTIAL, ["A", "B", "C"])

    registry.record_item(session.id, 2, {"barcode": "C"})
    registry.record_item(session.id, 0, {"barcode": "A"})
    assert not registry.record_item(session.id, 0, {"barcode": "A", "again": True})
    registry.record_item(session.id, 1, {"barcode": "B"})

    assert session.done
    assert [r["barcode"] for r in session.results] == ["A", "B", "C"]
    assert "again" not in session.results[0]


async def test_item_index_outside_the_list_is_rejected():
    registry = SessionRegistry()
    session = registry.create(SessionKind.SEQUENTIAL, ["A", "B"])

    assert not registry.record_item(session.id, 2, {"barcode": "X"})
    assert not registry.record_item(session.id, -1, {"barcode": "Y"})
    assert registry.record_item(session.id, 1, {"barcode": "B"})

    assert session.completed_count == 1
    assert not session.done
    assert session.results == [{"barcode": "B"}]


async def test_aborted_session_rejects_results():
    registry = SessionRegistry()
    session = registry.create(SessionKind.SEQUENTIAL, ["A"])
    registry.mark_aborted(session.id)

    assert not registry.record_item(session.id, 0, {"barcode": "A"})
    assert session.completed_count == 0


async def test_failing_cleanup_does_not_block_the_others():
    registry = SessionRegistry()
    session = registry.create(SessionKind.SEQUENTIAL, ["A"])
    ran = []

    def broken():
        raise RuntimeError("boom")

    registry.add_cleanup(session.id, broken)
    registry.add_cleanup(session.id, lambda: ran.append(True))
    registry.finish(session.id, SessionResponse.failed("tab closed"))

    assert ran == [True]
    assert (await session.response).error == "tab closed"


async def test_find_by_worker_and_remove():
    registry = SessionRegistry()
    session = registry.create(SessionKind.SEQUENTIAL, ["A"])
    session.worker_id = 42

    assert registry.find_by_worker(42) is session
    assert registry.find_by_worker(7) is None

    assert registry.remove(session.id)
    assert session.response.cancelled()
    assert registry.find_by_worker(42) is None


async def test_close_fails_everything_in_flight():
    registry = SessionRegistry()
    first = registry.create(SessionKind.FAN_OUT, ["SiteX"])
    second = registry.create(SessionKind.SEQUENTIAL, ["A"])

    registry.close("shutting down")

    assert (await first.response).error == "shutting down"
    assert (await second.response).success is False
    assert len(registry) == 0
    with pytest.raises(RuntimeError):
        registry.create(SessionKind.FAN_OUT, [])


async def test_session_ids_are_unique():
    registry = SessionRegistry()
    ids = {registry.create(SessionKind.FAN_OUT, []).id for _ in range(50)}
    assert len(ids) == 50
