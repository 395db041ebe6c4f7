from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import pytest
from starlette.websockets import WebSocketDisconnect

from clients.browser import BrowserHostError, TabUpdate
from clients.extension_gateway import ExtensionGateway


class FakeWebSocket:
    """The extension end of the socket: frames queued in ``inbox``, replies in ``outbox``."""

    def __init__(self) -> None:
        self.inbox: "asyncio.Queue[Optional[Dict[str, Any]]]" = asyncio.Queue()
        self.outbox: List[Dict[str, Any]] = []
        self.accepted = False
        self.closed = False

    async def accept(self) -> None:
        self.accepted = True

    async def send_json(self, data: Dict[str, Any]) -> None:
        self.outbox.append(data)

    async def receive_json(self) -> Dict[str, Any]:
        frame = await self.inbox.get()
        if frame is None:
            raise WebSocketDisconnect(code=1000)
        return frame

    async def close(self, code: int = 1000) -> None:
        self.closed = True
        self.inbox.put_nowait(None)

    async def next_frame(self) -> Dict[str, Any]:
        for _ in range(100):
            if self.outbox:
                return self.outbox.pop(0)
            await asyncio.sleep(0)
        raise AssertionError("gateway sent nothing")


@pytest.fixture
async def connected():
    gateway = ExtensionGateway(rpc_timeout=0.2)
    ws = FakeWebSocket()
    task = asyncio.ensure_future(gateway.serve(ws))
    assert await gateway.wait_for_connection(1.0)
    yield gateway, ws
    ws.inbox.put_nowait(None)
    await task


async def test_rpc_round_trip(connected):
    gateway, ws = connected

    call = asyncio.ensure_future(gateway.create_tab("https://x.example/", active=False))
    frame = await ws.next_frame()
    assert frame["type"] == "rpc"
    assert frame["method"] == "tabs.create"
    assert frame["params"] == {"url": "https://x.example/", "active": False}

    ws.inbox.put_nowait({"type": "rpcResult", "id": frame["id"], "ok": True, "result": {"id": 55, "url": "https://x.example/"}})

    assert await call == 55


async def test_rpc_error_raises(connected):
    gateway, ws = connected

    call = asyncio.ensure_future(gateway.close_tab(9))
    frame = await ws.next_frame()
    ws.inbox.put_nowait({"type": "rpcResult", "id": frame["id"], "ok": False, "error": {"message": "No tab with id: 9"}})

    with pytest.raises(BrowserHostError, match="No tab with id: 9"):
        await call


async def test_rpc_times_out(connected):
    gateway, _ = connected

    with pytest.raises(BrowserHostError, match="timed out"):
        await gateway.navigate(3, "https://x.example/")
    assert gateway.status()["pendingRpc"] == 0


async def test_query_tabs_parses_results(connected):
    gateway, ws = connected

    call = asyncio.ensure_future(gateway.find_tabs("https://nospos.com/*"))
    frame = await ws.next_frame()
    ws.inbox.put_nowait({
        "type": "rpcResult",
        "id": frame["id"],
        "ok": True,
        "result": [{"id": 4, "url": "https://nospos.com/stock/search", "status": "complete"}, {"bogus": True}],
    })

    tabs = await call
    assert [(t.tab_id, t.url) for t in tabs] == [(4, "https://nospos.com/stock/search")]


async def test_events_reach_subscribers(connected):
    gateway, ws = connected
    updates: List[TabUpdate] = []
    removed: List[int] = []
    gateway.on_updated(updates.append)
    gateway.on_removed(removed.append)

    ws.inbox.put_nowait({"type": "tabUpdated", "tabId": 4, "status": "complete", "url": "https://nospos.com/"})
    ws.inbox.put_nowait({"type": "tabUpdated", "tabId": 4, "status": "unloaded"})
    ws.inbox.put_nowait({"type": "tabRemoved", "tabId": 4})
    await asyncio.sleep(0.01)

    assert updates == [TabUpdate(tab_id=4, status="complete", url="https://nospos.com/")]
    assert removed == [4]


async def test_runtime_messages_are_relayed(connected):
    gateway, ws = connected
    seen = []
    gateway.set_message_handler(lambda message, tab_id: seen.append((message, tab_id)))

    ws.inbox.put_nowait({"type": "runtimeMessage", "tabId": 8, "message": {"action": "worker-ready", "data": {}}})
    await asyncio.sleep(0.01)

    assert seen == [({"action": "worker-ready", "data": {}}, 8)]


async def test_hello_and_ping(connected):
    gateway, ws = connected

    ws.inbox.put_nowait({"type": "hello", "extensionId": "abc", "extensionVersion": "1.2.0"})
    assert (await ws.next_frame())["type"] == "helloAck"
    ws.inbox.put_nowait({"type": "ping"})
    assert (await ws.next_frame())["type"] == "pong"

    status = gateway.status()
    assert status["connected"] is True
    assert status["extensionId"] == "abc"


async def test_disconnect_fails_pending_calls():
    gateway = ExtensionGateway(rpc_timeout=5.0)
    ws = FakeWebSocket()
    task = asyncio.ensure_future(gateway.serve(ws))
    await gateway.wait_for_connection(1.0)

    call = asyncio.ensure_future(gateway.get_tab(1))
    send = asyncio.ensure_future(gateway.send_message(1, {"action": "abort-work", "data": {}}))
    await ws.next_frame()
    await ws.next_frame()
    ws.inbox.put_nowait(None)
    await task

    assert await call is None
    with pytest.raises(BrowserHostError, match="disconnected"):
        await send
    assert not gateway.connected


async def test_calls_without_extension_fail_fast():
    gateway = ExtensionGateway()

    with pytest.raises(BrowserHostError, match="not connected"):
        await gateway.send_message(1, {"action": "start-work", "data": {}})
    assert await gateway.wait_for_connection(0.01) is False
