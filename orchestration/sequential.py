"""Resumable, checkpointed workflows that run in a single reloading tab.

Every item submission reloads the worker tab, so nothing held by the page
survives from one item to the next. Progress lives in the checkpoint store;
each finished page load re-enters :meth:`SiteWorkflow.resume`, which reads
the checkpoint, classifies the page it is looking at as the outcome of the
previously submitted item, and submits the next one.
"""

from __future__ import annotations

import abc
import asyncio
from typing import Dict, Optional

from loguru import logger

from clients.browser import BrowserHost, BrowserHostError
from clients.worker_channel import WorkerChannel
from config.settings import Settings, settings as default_settings
from models.session import Checkpoint, error_record, not_found_record
from orchestration.abort_monitor import MUST_LOG_IN, NAVIGATED_AWAY, AbortMonitor
from orchestration.registry import Session, SessionRegistry
from orchestration.scheduler import Scheduler
from orchestration.site_rules import PageKind, SiteRules
from storage.checkpoint_store import CheckpointStore


class SiteWorkflow(abc.ABC):
    """Shared tab handling and resume plumbing for workflows on the stock site."""

    name = "site"

    def __init__(
        self,
        host: BrowserHost,
        channel: WorkerChannel,
        registry: SessionRegistry,
        store: CheckpointStore,
        scheduler: Scheduler,
        monitor: AbortMonitor,
        rules: SiteRules,
        cfg: Optional[Settings] = None,
    ) -> None:
        self._host = host
        self._channel = channel
        self._registry = registry
        self._store = store
        self._scheduler = scheduler
        self._monitor = monitor
        self._rules = rules
        self._cfg = cfg or default_settings

        self._locks: Dict[str, asyncio.Lock] = {}
        # Page loads seen per session, and the load count at the last
        # navigation-causing action. Loads at or below that mark were already
        # on screen when the action was sent and are ignored.
        self._loads: Dict[str, int] = {}
        self._acted_at: Dict[str, int] = {}

    # ── Tab binding ───────────────────────────────────────────────────────────

    async def _bind_tab(self, session: Session) -> int:
        """Reuse an idle tab already on the site, otherwise open one."""
        tab_id: Optional[int] = None
        for tab in await self._host.find_tabs(self._rules.tab_match_pattern):
            if self._registry.find_by_worker(tab.tab_id) is None:
                tab_id = tab.tab_id
                break
        if tab_id is None:
            tab_id = await self._host.create_tab("about:blank", active=True)
        session.worker_id = tab_id

        session_id = session.id
        self._registry.add_cleanup(session_id, lambda: self._forget(session_id))
        self._monitor.watch(session_id, self.on_page_ready)
        return tab_id

    async def _open_search_page(self, session: Session) -> None:
        assert session.worker_id is not None, "bind a tab first"
        try:
            await self._host.navigate(session.worker_id, self._rules.search_url, active=True)
        except BrowserHostError as exc:
            logger.error(f"[{self.name}] Could not open {self._rules.search_url}: {exc}")
            self._monitor.abort(session.id, f"could not open worker tab: {exc}")

    def _forget(self, session_id: str) -> None:
        self._locks.pop(session_id, None)
        self._loads.pop(session_id, None)
        self._acted_at.pop(session_id, None)

    # ── Resume entry point ────────────────────────────────────────────────────

    def on_page_ready(self, session_id: str, tab_id: int, url: str) -> None:
        seq = self._loads.get(session_id, 0) + 1
        self._loads[session_id] = seq
        self._scheduler.spawn(self.resume(session_id, url, seq), name=f"resume-{session_id}")

    async def resume(self, session_id: str, url: str, seq: Optional[int] = None) -> None:
        lock = self._locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            if seq is not None and seq <= self._acted_at.get(session_id, 0):
                logger.debug(f"[{self.name}] Stale page load #{seq} for {session_id} ignored")
                return
            if not self._alive(session_id):
                return
            await self._scheduler.sleep(self._cfg.settle_delay_seconds)
            if not self._alive(session_id):
                return
            await self._step(session_id, url)

    @abc.abstractmethod
    async def _step(self, session_id: str, url: str) -> None:
        """Act on the page now loaded in the worker tab."""

    # ── Helpers for subclasses ────────────────────────────────────────────────

    def _alive(self, session_id: str) -> bool:
        session = self._registry.get(session_id)
        return session is not None and not session.aborted

    def _mark_acted(self, session_id: str) -> None:
        self._acted_at[session_id] = self._loads.get(session_id, 0)

    async def _pause_between_items(self) -> None:
        delay = await self._scheduler.jitter(self._cfg.item_delay_min_seconds, self._cfg.item_delay_max_seconds)
        if delay:
            logger.debug(f"[{self.name}] Waited {delay:.1f}s before next item")

    def _tab(self, session_id: str) -> Optional[int]:
        session = self._registry.get(session_id)
        return session.worker_id if session is not None else None


class SequentialLookup(SiteWorkflow):
    """
    Barcode lookup: one item per page round trip, results in input order.

    State transitions per page load::

        Idle -> Dispatching(i) -> AwaitingOutcome -> RecordingResult(i-1)
             -> Dispatching(i+1) | Terminal
    """

    name = "Sequential"

    async def start(self, session: Session) -> None:
        tab_id = await self._bind_tab(session)
        self._store.save_checkpoint(
            Checkpoint(session_id=session.id, items=session.targets, next_index=0, tab_id=tab_id)
        )
        logger.info(f"[Sequential] Session {session.id}: {len(session.targets)} item(s) on tab {tab_id}")
        await self._open_search_page(session)

    async def _step(self, session_id: str, url: str) -> None:
        checkpoint = self._store.load_checkpoint(session_id)
        if checkpoint is None:
            return
        kind = self._rules.classify(url)

        if kind == PageKind.ROOT:
            # Intermediate redirect; the real page load follows.
            return
        if kind == PageKind.LOGIN:
            self._monitor.abort(session_id, MUST_LOG_IN, close_tab=True)
            return

        if checkpoint.has_unrecorded_outcome():
            if kind not in (PageKind.DETAIL, PageKind.LISTING):
                logger.warning(f"[Sequential] Unrecognised page {url} for {session_id}")
                self._monitor.abort(session_id, NAVIGATED_AWAY)
                return
            if not await self._record_outcome(session_id, checkpoint, kind, url):
                return

        await self._dispatch_next(session_id, checkpoint, kind)

    async def _record_outcome(self, session_id: str, checkpoint: Checkpoint, kind: PageKind, url: str) -> bool:
        index = checkpoint.previous_index
        item = checkpoint.items[index]

        if kind == PageKind.DETAIL:
            record = await self._extract(session_id, item, url)
        else:
            logger.warning(f"[Sequential] No exact match for {item}")
            record = not_found_record(item)

        if not self._alive(session_id):
            return False
        self._registry.record_item(session_id, index, record)
        checkpoint.last_recorded_index = index
        self._store.save_checkpoint(checkpoint)
        return True

    async def _extract(self, session_id: str, item: str, url: str) -> dict:
        tab_id = self._tab(session_id)
        if tab_id is None:
            return error_record(item, "worker tab unavailable")
        try:
            record = await self._channel.extract_record(tab_id, session_id, item)
        except BrowserHostError as exc:
            logger.error(f"[Sequential] Extraction failed for {item}: {exc}")
            return error_record(item, str(exc))
        if record is None:
            logger.warning(f"[Sequential] Detail page for {item} had no identifying content")
            return not_found_record(item)
        logger.info(f"[Sequential] Found record for {item}")
        return {**record, "barcode": record.get("barcode") or item, "url": url}

    async def _dispatch_next(self, session_id: str, checkpoint: Checkpoint, kind: PageKind) -> None:
        while not checkpoint.finished:
            if kind not in (PageKind.LISTING, PageKind.DETAIL):
                # Nowhere to type the next item; wait for a usable page.
                return
            await self._pause_between_items()
            tab_id = self._tab(session_id)
            if tab_id is None or not self._alive(session_id):
                return

            index = checkpoint.next_index
            item = checkpoint.items[index]
            control = "search" if kind == PageKind.LISTING else "detail"
            # Persist before submitting: the submission destroys this page.
            checkpoint.next_index = index + 1
            self._store.save_checkpoint(checkpoint)
            self._mark_acted(session_id)
            logger.info(f"[Sequential] [{index + 1}/{len(checkpoint.items)}] Submitting {item} via {control} box")
            try:
                await self._channel.submit_item(tab_id, session_id, control, item)
                return
            except BrowserHostError as exc:
                logger.error(f"[Sequential] Could not submit {item}: {exc}")
                if not self._alive(session_id):
                    return
                self._registry.record_item(session_id, index, error_record(item, str(exc)))
                checkpoint.last_recorded_index = index
                self._store.save_checkpoint(checkpoint)

        logger.info(f"[Sequential] All {len(checkpoint.items)} item(s) processed for {session_id}")
        self._store.delete_checkpoint(session_id)
