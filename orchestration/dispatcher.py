"""Work dispatcher: parallel fan-out of one worker tab per search target."""

from __future__ import annotations

import asyncio
from typing import List, Optional

from loguru import logger

from clients.browser import BrowserHost, BrowserHostError, TabUpdate
from clients.worker_channel import WorkerChannel
from models.messages import CategoryHints
from orchestration.catalog import SearchTarget, TargetCatalog
from orchestration.registry import Session, SessionRegistry
from orchestration.scheduler import Scheduler


class WorkDispatcher:
    """
    Opens a background tab per target, navigates it to the target's search
    URL and, once the page has loaded, sends ``start-work`` with the target's
    extraction config. It never closes a session: results come back through
    :meth:`deliver` and the completion watcher decides when the session ends.
    """

    def __init__(
        self,
        host: BrowserHost,
        channel: WorkerChannel,
        registry: SessionRegistry,
        catalog: TargetCatalog,
        scheduler: Scheduler,
    ) -> None:
        self._host = host
        self._channel = channel
        self._registry = registry
        self._catalog = catalog
        self._scheduler = scheduler

    async def dispatch(self, session: Session, query: str, hints: Optional[CategoryHints] = None) -> int:
        """Start every target concurrently; returns how many workers were launched."""
        hints = hints or CategoryHints()
        launches = []
        for name in session.targets:
            target = self._catalog.get(name)
            if target is None:
                # Never reports; the session closes through its timeout.
                logger.error(f"[Dispatcher] No config found for {name}")
                continue
            launches.append(self._launch(session.id, target, query, hints))

        outcomes: List[bool] = await asyncio.gather(*launches) if launches else []
        launched = sum(1 for ok in outcomes if ok)
        logger.info(f"[Dispatcher] Session {session.id}: {launched}/{len(session.targets)} worker(s) launched")
        return launched

    async def _launch(self, session_id: str, target: SearchTarget, query: str, hints: CategoryHints) -> bool:
        url = target.build_url(query, hints)
        try:
            tab_id = await self._host.create_tab("about:blank", active=False)
        except BrowserHostError as exc:
            logger.error(f"[Dispatcher] Could not open a tab for {target.name}: {exc}")
            return False

        session = self._registry.get(session_id)
        if session is None:
            # Finished while the tab was opening.
            await self._close_quietly(tab_id)
            return False
        session.worker_tabs[target.name] = tab_id

        def _on_updated(update: TabUpdate) -> None:
            if update.tab_id != tab_id or not update.is_complete or update.url.startswith("about:"):
                return
            subscription.cancel()
            self._scheduler.spawn(
                self._start_work(session_id, tab_id, target, hints),
                name=f"start-work-{target.name}",
            )

        subscription = self._host.on_updated(_on_updated)
        if not self._registry.add_cleanup(session_id, subscription.cancel):
            subscription.cancel()
            return False

        try:
            await self._host.navigate(tab_id, url)
        except BrowserHostError as exc:
            logger.error(f"[Dispatcher] Navigation to {target.name} failed: {exc}")
            subscription.cancel()
            return False
        logger.debug(f"[Dispatcher] {target.name} -> tab {tab_id}: {url}")
        return True

    async def _start_work(self, session_id: str, tab_id: int, target: SearchTarget, hints: CategoryHints) -> None:
        if self._registry.get(session_id) is None:
            return
        try:
            received = await self._channel.start_work(tab_id, session_id, target.name, target.extraction, hints)
        except BrowserHostError as exc:
            logger.error(f"[Dispatcher] start-work to {target.name} failed: {exc}")
            return
        if not received:
            logger.warning(f"[Dispatcher] {target.name} did not acknowledge start-work")

    def deliver(self, session_id: str, target_name: Optional[str], results: List[dict]) -> bool:
        """Feed a worker's result batch into the registry."""
        return self._registry.append_results(session_id, results, target_name)

    async def release_workers(self, session: Session) -> None:
        """Abort unfinished workers and close every tab the session opened."""
        for name, tab_id in list(session.worker_tabs.items()):
            if name not in session.reported_targets:
                await self._channel.abort_work(tab_id, session.id)
            await self._close_quietly(tab_id)
        session.worker_tabs.clear()

    async def _close_quietly(self, tab_id: int) -> None:
        try:
            await self._host.close_tab(tab_id)
        except BrowserHostError as exc:
            logger.debug(f"[Dispatcher] Tab {tab_id} already gone: {exc}")
