"""Orchestrator.

Owns the session registry and every component that mutates it, and routes
``{action, data}`` protocol messages from callers and tab workers:
start session -> dispatch workers -> collect results -> single response.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Union

from loguru import logger

from clients.browser import BrowserHost, BrowserHostError
from clients.worker_channel import WorkerChannel
from config.settings import Settings, settings as default_settings
from models.messages import (
    Action,
    FanOutDelivery,
    FanOutRequest,
    MarkListedRequest,
    Message,
    SequentialDelivery,
    SequentialRequest,
)
from models.session import SessionKind, SessionResponse
from orchestration.abort_monitor import AbortMonitor
from orchestration.catalog import TargetCatalog
from orchestration.dispatcher import WorkDispatcher
from orchestration.external_listing import MarkListedWorkflow
from orchestration.registry import Session, SessionRegistry
from orchestration.scheduler import Scheduler
from orchestration.sequential import SequentialLookup
from orchestration.site_rules import SiteRules
from orchestration.watcher import CompletionWatcher
from storage.checkpoint_store import CheckpointStore


class Orchestrator:
    """
    Top-level coordinator for fan-out and sequential sessions.

    Created once per process with the browser host it drives; ``shutdown()``
    fails whatever is still in flight and cancels every timer.
    """

    def __init__(
        self,
        host: BrowserHost,
        registry: Optional[SessionRegistry] = None,
        store: Optional[CheckpointStore] = None,
        scheduler: Optional[Scheduler] = None,
        catalog: Optional[TargetCatalog] = None,
        rules: Optional[SiteRules] = None,
        cfg: Optional[Settings] = None,
    ) -> None:
        self._cfg = cfg or default_settings
        self._host = host
        self._registry = registry or SessionRegistry()
        self._store = store or CheckpointStore(self._cfg.checkpoint_dir)
        self._scheduler = scheduler or Scheduler()
        self._catalog = catalog if catalog is not None else TargetCatalog.from_file(self._cfg.targets_file)
        self._rules = rules or SiteRules.from_settings(self._cfg)

        self._channel = WorkerChannel(host)
        self._watcher = CompletionWatcher(self._registry, self._scheduler, self._cfg.poll_interval_seconds)
        self._monitor = AbortMonitor(host, self._registry, self._store, self._scheduler, self._rules)
        self._dispatcher = WorkDispatcher(host, self._channel, self._registry, self._catalog, self._scheduler)
        workflow_args = (host, self._channel, self._registry, self._store, self._scheduler, self._monitor, self._rules, self._cfg)
        self._lookup = SequentialLookup(*workflow_args)
        self._mark_listed = MarkListedWorkflow(*workflow_args)

        # Checkpoints from a previous process belong to sessions nobody is waiting on.
        self._store.purge_stale(self._registry.ids())

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    @property
    def store(self) -> CheckpointStore:
        return self._store

    # ── Message routing ───────────────────────────────────────────────────────

    async def handle_message(
        self,
        message: Union[Message, Dict[str, Any]],
        sender_tab: Optional[int] = None,
    ) -> Optional[Dict[str, Any]]:
        """Route one protocol message. Requests return the session response as a dict."""
        msg = message if isinstance(message, Message) else Message.model_validate(message)

        if msg.action == Action.START_FANOUT:
            response = await self.start_fanout(FanOutRequest.model_validate(msg.data))
            return response.to_wire()
        if msg.action == Action.START_SEQUENTIAL:
            response = await self.start_sequential(SequentialRequest.model_validate(msg.data))
            return response.to_wire()
        if msg.action == Action.START_MARK_LISTED:
            response = await self.start_mark_listed(MarkListedRequest.model_validate(msg.data))
            return response.to_wire()
        if msg.action == Action.DELIVER_RESULT:
            self.deliver_result(msg.data, sender_tab)
            return None
        if msg.action == Action.WORKER_READY:
            logger.info(f"Worker ready in tab {sender_tab} (session {msg.data.get('sessionId')})")
            return None
        raise ValueError(f"Action '{msg.action.value}' is not accepted by the orchestrator")

    # ── Session starters ──────────────────────────────────────────────────────

    async def start_fanout(self, request: FanOutRequest) -> SessionResponse:
        # One worker (and one expected delivery) per distinct target.
        targets = list(dict.fromkeys(request.target_list))
        session = self._registry.create(SessionKind.FAN_OUT, targets)
        self._watcher.watch(session, self._cfg.fanout_timeout_seconds, on_teardown=self._release_fanout)
        if not session.response.done():
            logger.info(f"Fan-out '{request.query}' across {', '.join(targets)}")
            try:
                await self._dispatcher.dispatch(session, request.query, request.category_hints)
            except Exception as exc:
                logger.exception(f"Fan-out dispatch failed: {exc}")
                self._fail(session, str(exc))
        return await session.response

    async def start_sequential(self, request: SequentialRequest) -> SessionResponse:
        session = self._registry.create(SessionKind.SEQUENTIAL, request.item_list)
        self._watcher.watch(session, self._cfg.sequential_timeout_seconds, on_teardown=self._release_sequential)
        if not session.response.done():
            try:
                await self._lookup.start(session)
            except BrowserHostError as exc:
                logger.error(f"Sequential session could not start: {exc}")
                self._fail(session, str(exc))
        return await session.response

    async def start_mark_listed(self, request: MarkListedRequest) -> SessionResponse:
        session = self._registry.create(SessionKind.SEQUENTIAL, [request.identifier])
        self._watcher.watch(session, self._cfg.sequential_timeout_seconds, on_teardown=self._release_sequential)
        try:
            await self._mark_listed.start(session, request.identifier)
        except BrowserHostError as exc:
            logger.error(f"Mark-listed session could not start: {exc}")
            self._fail(session, str(exc))
        return await session.response

    # ── Worker -> orchestrator ────────────────────────────────────────────────

    def deliver_result(self, data: Dict[str, Any], sender_tab: Optional[int] = None) -> bool:
        session = self._registry.get(str(data.get("sessionId", "")))
        if session is None:
            logger.debug(f"Result for unknown or finished session from tab {sender_tab} dropped")
            return False
        if session.kind == SessionKind.FAN_OUT:
            delivery = FanOutDelivery.model_validate(data)
            return self._dispatcher.deliver(delivery.session_id, delivery.target_name, delivery.results)

        delivery = SequentialDelivery.model_validate(data)
        if delivery.index is not None:
            return self._registry.record_item(delivery.session_id, delivery.index, delivery.result_record)

        # No index: the record describes the outcome on screen, i.e. the last submitted item.
        checkpoint = self._store.load_checkpoint(delivery.session_id)
        if checkpoint is None or not checkpoint.has_unrecorded_outcome():
            logger.warning(f"Unindexed result for {delivery.session_id} matches no submitted item; dropped")
            return False
        if not self._registry.record_item(delivery.session_id, checkpoint.previous_index, delivery.result_record):
            return False
        checkpoint.last_recorded_index = checkpoint.previous_index
        self._store.save_checkpoint(checkpoint)
        return True

    # ── Teardown ──────────────────────────────────────────────────────────────

    def _fail(self, session: Session, error: str) -> None:
        if session.kind == SessionKind.FAN_OUT:
            self._release_fanout(session, "failed")
        self._monitor.abort(session.id, error)

    def _release_fanout(self, session: Session, reason: str) -> None:
        self._scheduler.spawn(self._dispatcher.release_workers(session), name=f"release-{session.id}")

    def _release_sequential(self, session: Session, reason: str) -> None:
        self._store.discard(session.id)
        if reason == "timeout" and session.worker_id is not None:
            self._scheduler.spawn(self._close_tab(session.worker_id), name=f"close-{session.worker_id}")

    async def _close_tab(self, tab_id: int) -> None:
        try:
            await self._host.close_tab(tab_id)
        except BrowserHostError as exc:
            logger.warning(f"Could not close tab {tab_id} after timeout: {exc}")

    def status(self) -> Dict[str, Any]:
        return {
            "sessions": len(self._registry),
            "targets": self._catalog.names(),
            "pendingTasks": self._scheduler.pending,
        }

    async def shutdown(self) -> None:
        logger.info(f"Orchestrator shutting down ({len(self._registry)} session(s) in flight)")
        for session_id in self._registry.ids():
            self._store.discard(session_id)
        self._registry.close()
        await self._scheduler.shutdown()
