"""Abort monitor: externally triggered termination of a sequential session."""

from __future__ import annotations

from typing import Callable, Optional

from loguru import logger

from clients.browser import BrowserHost, TabUpdate
from models.session import SessionResponse
from orchestration.registry import SessionRegistry
from orchestration.scheduler import Scheduler
from orchestration.site_rules import PageKind, SiteRules
from storage.checkpoint_store import CheckpointStore

TAB_CLOSED = "tab closed"
NAVIGATED_AWAY = "navigated away"
MUST_LOG_IN = "must log in"

PageReady = Callable[[str, int, str], None]


class AbortMonitor:
    """
    Watches the worker tab of a sequential session.

    Three triggers end the session with a failure response: the tab is
    closed, the tab starts loading a page outside the site's allow-list, or a
    page finishes loading on the login screen (the tab is closed as well).
    Any other finished load is handed to ``on_page_ready(session_id, tab_id,
    url)`` so the workflow can resume. Both subscriptions are registered as
    session cleanups and detach on every terminal path.
    """

    def __init__(
        self,
        host: BrowserHost,
        registry: SessionRegistry,
        store: CheckpointStore,
        scheduler: Scheduler,
        rules: SiteRules,
    ) -> None:
        self._host = host
        self._registry = registry
        self._store = store
        self._scheduler = scheduler
        self._rules = rules

    def watch(self, session_id: str, on_page_ready: Optional[PageReady] = None) -> None:
        def _on_removed(tab_id: int) -> None:
            session = self._registry.get(session_id)
            if session is None or session.aborted or tab_id != session.worker_id:
                return
            logger.warning(f"[AbortMonitor] Worker tab {tab_id} closed; aborting {session_id}")
            self.abort(session_id, TAB_CLOSED)

        def _on_updated(update: TabUpdate) -> None:
            session = self._registry.get(session_id)
            if session is None or session.aborted or update.tab_id != session.worker_id:
                return

            if update.is_loading:
                if update.url and not self._rules.is_allowed(update.url):
                    logger.warning(f"[AbortMonitor] Tab {update.tab_id} navigated to {update.url}; aborting {session_id}")
                    self.abort(session_id, NAVIGATED_AWAY)
                return

            if not update.is_complete:
                return
            if self._rules.classify(update.url) == PageKind.LOGIN:
                logger.warning(f"[AbortMonitor] Login required on tab {update.tab_id}; aborting {session_id}")
                self.abort(session_id, MUST_LOG_IN, close_tab=True)
                return
            if on_page_ready is not None:
                on_page_ready(session_id, update.tab_id, update.url)

        removed = self._host.on_removed(_on_removed)
        updated = self._host.on_updated(_on_updated)
        self._registry.add_cleanup(session_id, removed.cancel)
        self._registry.add_cleanup(session_id, updated.cancel)

    def abort(self, session_id: str, reason: str, close_tab: bool = False) -> bool:
        """Fail a session: mark it aborted, drop its durable state, answer once."""
        session = self._registry.get(session_id)
        if session is None or session.aborted:
            return False
        self._registry.mark_aborted(session_id)
        self._store.discard(session_id)
        tab_id = session.worker_id
        finished = self._registry.finish(session_id, SessionResponse.failed(reason))
        if close_tab and tab_id is not None:
            self._scheduler.spawn(self._close_quietly(tab_id), name=f"close-tab-{tab_id}")
        return finished

    async def _close_quietly(self, tab_id: int) -> None:
        try:
            await self._host.close_tab(tab_id)
        except Exception as exc:
            logger.warning(f"[AbortMonitor] Could not close tab {tab_id}: {exc}")
