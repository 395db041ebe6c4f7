"""Mark a stock item as externally listed.

Same resume discipline as the barcode lookup, but the durable record is a
single pending identifier plus the stage reached. The update is idempotent:
if the item is already flagged no save is triggered.
"""

from __future__ import annotations

from loguru import logger

from clients.browser import BrowserHostError
from models.session import ListingStage, PendingUpdate, error_record, not_found_record
from orchestration.abort_monitor import MUST_LOG_IN
from orchestration.registry import Session
from orchestration.sequential import SiteWorkflow
from orchestration.site_rules import PageKind


class MarkListedWorkflow(SiteWorkflow):
    name = "MarkListed"

    async def start(self, session: Session, identifier: str) -> None:
        tab_id = await self._bind_tab(session)
        self._store.save_pending(
            PendingUpdate(session_id=session.id, pending_identifier=identifier, tab_id=tab_id)
        )
        logger.info(f"[MarkListed] Session {session.id}: flag {identifier} on tab {tab_id}")
        await self._open_search_page(session)

    async def _step(self, session_id: str, url: str) -> None:
        pending = self._store.load_pending(session_id)
        if pending is None:
            return
        tab_id = self._tab(session_id)
        if tab_id is None:
            return
        kind = self._rules.classify(url)
        identifier = pending.pending_identifier

        if kind == PageKind.LOGIN:
            self._monitor.abort(session_id, MUST_LOG_IN, close_tab=True)
            return

        if pending.stage == ListingStage.SAVED:
            if kind == PageKind.DETAIL:
                logger.success(f"[MarkListed] {identifier} saved as externally listed")
                self._finish(session_id, {"barcode": identifier, "updated": True})
            elif kind == PageKind.LISTING:
                logger.error(f"[MarkListed] Save of {identifier} left the item page; not confirmed")
                self._finish(session_id, error_record(identifier, "save not confirmed"))
            return

        if pending.stage == ListingStage.SEARCH and kind == PageKind.LISTING:
            await self._pause_between_items()
            if not self._alive(session_id):
                return
            pending.stage = ListingStage.EDIT
            self._store.save_pending(pending)
            self._mark_acted(session_id)
            try:
                await self._channel.submit_item(tab_id, session_id, "search", identifier)
            except BrowserHostError as exc:
                self._finish(session_id, error_record(identifier, str(exc)))
            return

        if pending.stage == ListingStage.EDIT and kind == PageKind.LISTING:
            logger.warning(f"[MarkListed] No exact match for {identifier}")
            self._finish(session_id, not_found_record(identifier))
            return

        if pending.stage == ListingStage.EDIT and kind == PageKind.DETAIL:
            await self._update_flag(session_id, tab_id, pending)

    async def _update_flag(self, session_id: str, tab_id: int, pending: PendingUpdate) -> None:
        identifier = pending.pending_identifier
        try:
            already = await self._channel.read_listed_flag(tab_id, session_id)
        except BrowserHostError as exc:
            self._finish(session_id, error_record(identifier, str(exc)))
            return
        if already:
            logger.info(f"[MarkListed] {identifier} already flagged; nothing to save")
            self._finish(session_id, {"barcode": identifier, "updated": False})
            return
        if not self._alive(session_id):
            return

        pending.stage = ListingStage.SAVED
        self._store.save_pending(pending)
        self._mark_acted(session_id)
        try:
            await self._channel.set_listed(tab_id, session_id)
        except BrowserHostError as exc:
            self._finish(session_id, error_record(identifier, str(exc)))

    def _finish(self, session_id: str, record: dict) -> None:
        self._store.delete_pending(session_id)
        self._registry.record_item(session_id, 0, record)
