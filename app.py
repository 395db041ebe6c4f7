"""
app.py - HTTP/WebSocket surface of the orchestrator (Starlette).

Routes
------
GET  /health      gateway + session status
POST /messages    ``{"action", "data"}`` envelope from a caller page or script
WS   /extension   the browser extension's gateway connection
"""
from __future__ import annotations

import contextlib
from typing import Any, AsyncIterator, Dict, Optional

from loguru import logger
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route, WebSocketRoute
from starlette.websockets import WebSocket

from clients.browser import BrowserHost
from clients.extension_gateway import ExtensionGateway
from config.settings import Settings, settings as default_settings
from models.messages import REQUEST_ACTIONS, Message
from orchestration.orchestrator import Orchestrator
from orchestration.scheduler import Scheduler


def create_app(cfg: Optional[Settings] = None, host: Optional[BrowserHost] = None) -> Starlette:
    """Build the app. ``host`` defaults to a fresh :class:`ExtensionGateway`."""
    cfg = cfg or default_settings
    browser = host or ExtensionGateway(rpc_timeout=cfg.rpc_timeout_seconds)
    state: Dict[str, Any] = {}

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        scheduler = Scheduler()
        orchestrator = Orchestrator(browser, scheduler=scheduler, cfg=cfg)
        state["orchestrator"] = orchestrator
        if isinstance(browser, ExtensionGateway):

            def _relay(message: Dict[str, Any], tab_id: Optional[int]) -> None:
                scheduler.spawn(_handle_worker_message(orchestrator, message, tab_id), name="worker-message")

            browser.set_message_handler(_relay)
        logger.info("Orchestrator ready.")
        try:
            yield
        finally:
            await orchestrator.shutdown()
            state.clear()

    async def health(request: Request) -> JSONResponse:
        orchestrator: Optional[Orchestrator] = state.get("orchestrator")
        gateway = browser.status() if isinstance(browser, ExtensionGateway) else {"connected": True}
        return JSONResponse({
            "status": "ready" if orchestrator is not None else "starting",
            "gateway": gateway,
            "orchestrator": orchestrator.status() if orchestrator is not None else None,
        })

    async def messages_endpoint(request: Request) -> JSONResponse:
        orchestrator: Optional[Orchestrator] = state.get("orchestrator")
        if orchestrator is None:
            return JSONResponse({"success": False, "error": "orchestrator not running"}, status_code=503)
        try:
            body = await request.json()
            message = Message.model_validate(body)
        except (ValueError, ValidationError) as exc:
            return JSONResponse({"success": False, "error": f"invalid message: {exc}"}, status_code=400)

        try:
            response = await orchestrator.handle_message(message)
        except ValidationError as exc:
            return JSONResponse({"success": False, "error": f"invalid payload: {exc}"}, status_code=400)
        except ValueError as exc:
            return JSONResponse({"success": False, "error": str(exc)}, status_code=400)

        if message.action in REQUEST_ACTIONS:
            return JSONResponse(response)
        return JSONResponse({"accepted": True})

    async def extension_endpoint(ws: WebSocket) -> None:
        if not isinstance(browser, ExtensionGateway):
            await ws.close(code=1013)
            return
        await browser.serve(ws)

    return Starlette(
        routes=[
            Route("/",          health,            methods=["GET"]),
            Route("/health",    health,            methods=["GET"]),
            Route("/messages",  messages_endpoint, methods=["POST"]),
            WebSocketRoute("/extension", extension_endpoint),
        ],
        lifespan=lifespan,
    )


async def _handle_worker_message(orchestrator: Orchestrator, message: Dict[str, Any], tab_id: Optional[int]) -> None:
    try:
        await orchestrator.handle_message(message, sender_tab=tab_id)
    except (ValueError, ValidationError) as exc:
        logger.warning(f"Rejected message from tab {tab_id}: {exc}")
