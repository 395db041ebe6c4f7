"""Browser host backed by the companion browser extension over a WebSocket.

The extension's background script connects to ``/extension`` and then:

- answers ``{"type": "rpc", "id", "method", "params"}`` frames with
  ``{"type": "rpcResult", "id", "ok", "result" | "error"}``;
- pushes ``tabUpdated`` / ``tabRemoved`` events;
- relays messages sent by tab workers as ``runtimeMessage`` frames.

Only one extension connection is served at a time; a new connection
replaces the previous one and fails its pending calls.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from loguru import logger
from starlette.websockets import WebSocket, WebSocketDisconnect

from clients.browser import BrowserHost, BrowserHostError, TabInfo, TabUpdate
from config.settings import settings

GATEWAY_PROTOCOL_VERSION = "2026-10-01"

RuntimeMessageHandler = Callable[[Dict[str, Any], Optional[int]], None]


def _now_ms() -> int:
    return int(time.time() * 1000)


def _tab_info(raw: Any) -> Optional[TabInfo]:
    if not isinstance(raw, dict) or not isinstance(raw.get("id"), int):
        return None
    return TabInfo(
        tab_id=raw["id"],
        url=str(raw.get("url") or ""),
        status=str(raw.get("status") or ""),
        active=bool(raw.get("active")),
    )


@dataclass(frozen=True)
class ExtensionClientInfo:
    extension_id: str
    extension_version: Optional[str] = None
    user_agent: Optional[str] = None


class ExtensionGateway(BrowserHost):
    """RPC client for tab operations, event source for tab lifecycle."""

    def __init__(self, rpc_timeout: Optional[float] = None) -> None:
        super().__init__()
        self._rpc_timeout = rpc_timeout or settings.rpc_timeout_seconds
        self._ws: Optional[WebSocket] = None
        self._client: Optional[ExtensionClientInfo] = None
        self._last_seen_ms = 0
        self._next_id = 1
        self._pending: Dict[int, asyncio.Future] = {}
        self._on_runtime_message: Optional[RuntimeMessageHandler] = None
        self._connected = asyncio.Event()

    # ─────────────────────────────────────────────────────────────────────────
    # Connection lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def set_message_handler(self, handler: RuntimeMessageHandler) -> None:
        self._on_runtime_message = handler

    @property
    def connected(self) -> bool:
        return self._ws is not None

    async def wait_for_connection(self, timeout: float = 5.0) -> bool:
        try:
            await asyncio.wait_for(self._connected.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def status(self) -> Dict[str, Any]:
        client = self._client
        return {
            "connected": self.connected,
            "protocolVersion": GATEWAY_PROTOCOL_VERSION,
            "extensionId": client.extension_id if client else None,
            "extensionVersion": client.extension_version if client else None,
            "lastSeenMs": self._last_seen_ms or None,
            "pendingRpc": len(self._pending),
        }

    async def serve(self, ws: WebSocket) -> None:
        """Run one extension connection until it closes."""
        await ws.accept()
        previous = self._ws
        if previous is not None:
            logger.warning("[Gateway] New extension connection replaces the previous one")
            self._disconnect("Extension connection replaced")
            try:
                await previous.close()
            except RuntimeError:
                pass
        self._ws = ws
        self._last_seen_ms = _now_ms()
        self._connected.set()
        logger.info("[Gateway] Extension connected")
        try:
            while True:
                msg = await ws.receive_json()
                self._last_seen_ms = _now_ms()
                await self._on_message(ws, msg)
        except WebSocketDisconnect:
            logger.info("[Gateway] Extension disconnected")
        finally:
            if self._ws is ws:
                self._disconnect("Extension disconnected")

    def _disconnect(self, reason: str) -> None:
        self._ws = None
        self._client = None
        self._connected.clear()
        pending, self._pending = self._pending, {}
        for fut in pending.values():
            if not fut.done():
                fut.set_exception(BrowserHostError(reason))

    # ─────────────────────────────────────────────────────────────────────────
    # RPC
    # ─────────────────────────────────────────────────────────────────────────

    async def rpc_call(self, method: str, params: Optional[Dict[str, Any]] = None, *, timeout: Optional[float] = None) -> Any:
        ws = self._ws
        if ws is None:
            raise BrowserHostError(
                "Extension is not connected. Install/enable the extension and ensure it can reach the gateway."
            )
        req_id = self._next_id
        self._next_id += 1
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[req_id] = fut

        msg: Dict[str, Any] = {"type": "rpc", "id": req_id, "method": method}
        if params:
            msg["params"] = params
        try:
            await ws.send_json(msg)
        except Exception as exc:
            self._pending.pop(req_id, None)
            raise BrowserHostError(f"Extension RPC send failed: {exc}") from exc

        try:
            return await asyncio.wait_for(fut, timeout=timeout or self._rpc_timeout)
        except asyncio.TimeoutError as exc:
            raise BrowserHostError(f"Extension RPC timed out: method={method}") from exc
        finally:
            self._pending.pop(req_id, None)

    async def _on_message(self, ws: WebSocket, msg: Any) -> None:
        if not isinstance(msg, dict):
            return
        mtype = msg.get("type")

        if mtype == "rpcResult":
            fut = self._pending.get(msg.get("id")) if isinstance(msg.get("id"), int) else None
            if fut is None or fut.done():
                return
            if msg.get("ok"):
                fut.set_result(msg.get("result"))
                return
            err = msg.get("error")
            err_msg = err.get("message") if isinstance(err, dict) else err
            fut.set_exception(BrowserHostError(str(err_msg or "Extension RPC failed")))
            return

        if mtype == "tabUpdated":
            tab_id = msg.get("tabId")
            status = msg.get("status")
            if isinstance(tab_id, int) and status in ("loading", "complete"):
                self.emit_updated(TabUpdate(tab_id=tab_id, status=status, url=str(msg.get("url") or "")))
            return

        if mtype == "tabRemoved":
            tab_id = msg.get("tabId")
            if isinstance(tab_id, int):
                self.emit_removed(tab_id)
            return

        if mtype == "runtimeMessage":
            message = msg.get("message")
            tab_id = msg.get("tabId")
            if isinstance(message, dict) and self._on_runtime_message is not None:
                self._on_runtime_message(message, tab_id if isinstance(tab_id, int) else None)
            return

        if mtype == "hello":
            self._client = ExtensionClientInfo(
                extension_id=str(msg.get("extensionId") or "unknown"),
                extension_version=msg.get("extensionVersion"),
                user_agent=msg.get("userAgent"),
            )
            logger.info(f"[Gateway] Hello from extension {self._client.extension_id} v{self._client.extension_version}")
            await ws.send_json({"type": "helloAck", "protocolVersion": GATEWAY_PROTOCOL_VERSION, "ts": _now_ms()})
            return

        if mtype == "ping":
            await ws.send_json({"type": "pong", "ts": _now_ms()})
            return

        if mtype == "log":
            logger.debug(f"[Extension] {str(msg.get('message') or '')[:2000]}")

    # ─────────────────────────────────────────────────────────────────────────
    # BrowserHost
    # ─────────────────────────────────────────────────────────────────────────

    async def create_tab(self, url: str, active: bool = False) -> int:
        result = await self.rpc_call("tabs.create", {"url": url, "active": active})
        info = _tab_info(result)
        if info is None:
            raise BrowserHostError(f"tabs.create returned no tab id: {result!r}")
        return info.tab_id

    async def navigate(self, tab_id: int, url: str, active: Optional[bool] = None) -> None:
        params: Dict[str, Any] = {"tabId": tab_id, "url": url}
        if active is not None:
            params["active"] = active
        await self.rpc_call("tabs.update", params)

    async def close_tab(self, tab_id: int) -> None:
        await self.rpc_call("tabs.remove", {"tabId": tab_id})

    async def find_tabs(self, url_pattern: str) -> List[TabInfo]:
        result = await self.rpc_call("tabs.query", {"url": url_pattern})
        tabs = [_tab_info(raw) for raw in (result if isinstance(result, list) else [])]
        return [tab for tab in tabs if tab is not None]

    async def get_tab(self, tab_id: int) -> Optional[TabInfo]:
        try:
            return _tab_info(await self.rpc_call("tabs.get", {"tabId": tab_id}))
        except BrowserHostError:
            return None

    async def send_message(self, tab_id: int, message: Dict[str, Any]) -> Any:
        return await self.rpc_call("tabs.sendMessage", {"tabId": tab_id, "message": message})
