from __future__ import annotations

import pytest
from starlette.testclient import TestClient

from app import create_app


@pytest.fixture
def client(cfg, browser):
    with TestClient(create_app(cfg, host=browser)) as test_client:
        yield test_client


def test_health(client):
    resp = client.get("/health")

    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "ready"
    assert body["orchestrator"]["sessions"] == 0
    assert "CEX" in body["orchestrator"]["targets"]


def test_empty_requests_answer_immediately(client):
    lookup = client.post("/messages", json={"action": "start-sequential", "data": {"itemList": []}})
    fanout = client.post("/messages", json={"action": "start-fanout", "data": {"query": "ps5", "targetList": []}})

    assert lookup.json() == {"success": True, "results": []}
    assert fanout.json() == {"success": True, "results": []}


def test_worker_messages_are_acknowledged(client):
    resp = client.post(
        "/messages",
        json={"action": "deliver-result", "data": {"sessionId": "gone", "targetName": "CEX", "results": []}},
    )

    assert resp.status_code == 200
    assert resp.json() == {"accepted": True}


@pytest.mark.parametrize(
    "body",
    [
        {"action": "launch-rockets", "data": {}},
        {"action": "start-fanout", "data": {"query": ""}},
        {"action": "start-mark-listed", "data": {}},
        {"action": "start-work", "data": {"sessionId": "1"}},
    ],
)
def test_bad_messages_rejected(client, body):
    resp = client.post("/messages", json=body)

    assert resp.status_code == 400
    assert resp.json()["success"] is False


def test_non_json_body_rejected(client):
    resp = client.post("/messages", content=b"not json", headers={"content-type": "application/json"})
    assert resp.status_code == 400
