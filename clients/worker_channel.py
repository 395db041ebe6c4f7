"""Typed messages from the orchestrator to the worker running inside a tab."""

from __future__ import annotations

from typing import Any, Dict, Optional

from loguru import logger

from clients.browser import BrowserHost, BrowserHostError
from models.messages import Action, CategoryHints, Message


class WorkerChannel:
    """
    Thin wrapper over :meth:`BrowserHost.send_message`.

    Every call builds an ``{action, data}`` envelope carrying the session id.
    Transport failures surface as :class:`BrowserHostError`; a worker reply
    that is not a dict is treated as an empty reply.
    """

    def __init__(self, host: BrowserHost) -> None:
        self._host = host

    async def _send(self, tab_id: int, action: Action, data: Dict[str, Any]) -> Dict[str, Any]:
        message = Message(action=action, data=data)
        reply = await self._host.send_message(tab_id, message.to_wire())
        if isinstance(reply, dict) and reply.get("error"):
            raise BrowserHostError(str(reply["error"]))
        return reply if isinstance(reply, dict) else {}

    async def start_work(
        self,
        tab_id: int,
        session_id: str,
        target_name: str,
        extraction_config: Dict[str, Any],
        hints: Optional[CategoryHints] = None,
    ) -> bool:
        reply = await self._send(
            tab_id,
            Action.START_WORK,
            {
                "sessionId": session_id,
                "targetName": target_name,
                "extractionConfig": extraction_config,
                "categoryHints": (hints or CategoryHints()).model_dump(exclude_none=True),
            },
        )
        return bool(reply.get("received"))

    async def abort_work(self, tab_id: int, session_id: str) -> bool:
        try:
            reply = await self._send(tab_id, Action.ABORT_WORK, {"sessionId": session_id})
        except BrowserHostError as exc:
            logger.debug(f"abort-work not delivered to tab {tab_id}: {exc}")
            return False
        return bool(reply.get("aborted"))

    async def extract_record(self, tab_id: int, session_id: str, item: str) -> Optional[Dict[str, Any]]:
        """Full record for ``item`` from a detail page, or None if the page identifies nothing."""
        reply = await self._send(tab_id, Action.EXTRACT_RECORD, {"sessionId": session_id, "item": item})
        record = reply.get("record")
        return record if isinstance(record, dict) and record else None

    async def submit_item(self, tab_id: int, session_id: str, control: str, value: str) -> None:
        await self._send(
            tab_id,
            Action.SUBMIT_ITEM,
            {"sessionId": session_id, "control": control, "value": value},
        )

    async def read_listed_flag(self, tab_id: int, session_id: str) -> bool:
        reply = await self._send(tab_id, Action.READ_LISTED_FLAG, {"sessionId": session_id})
        return bool(reply.get("listed"))

    async def set_listed(self, tab_id: int, session_id: str) -> None:
        await self._send(tab_id, Action.SET_LISTED, {"sessionId": session_id})
