"""Completion watcher and timeout guard."""

from __future__ import annotations

from typing import Callable, Optional

from loguru import logger

from models.session import SessionResponse
from orchestration.registry import Session, SessionRegistry
from orchestration.scheduler import Scheduler

Teardown = Callable[[Session, str], None]


class CompletionWatcher:
    """
    Resolves a session exactly once: on completion, on timeout, or not at all
    if an abort got there first.

    ``watch()`` arms a repeating poll and a one-shot timeout and registers
    both as session cleanups, so whichever path finishes the session disarms
    the other. ``on_teardown`` runs before the response is delivered with the
    reason ``"completed"`` or ``"timeout"``; the orchestrator uses it to close
    worker tabs.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        scheduler: Scheduler,
        poll_interval: float,
    ) -> None:
        self._registry = registry
        self._scheduler = scheduler
        self._poll_interval = poll_interval

    def watch(self, session: Session, timeout: float, on_teardown: Optional[Teardown] = None) -> None:
        session_id = session.id

        def _settle(reason: str, response_for: Callable[[Session], SessionResponse]) -> None:
            current = self._registry.get(session_id)
            if current is None or current.aborted:
                return
            if on_teardown is not None:
                on_teardown(current, reason)
            self._registry.finish(session_id, response_for(current))

        def _poll() -> None:
            current = self._registry.get(session_id)
            if current is not None and current.done:
                logger.info(f"[Watcher] Session {session_id} complete ({current.completed_count}/{current.expected_total})")
                _settle("completed", lambda s: SessionResponse.completed(s.results))

        def _timeout() -> None:
            current = self._registry.get(session_id)
            if current is None:
                return
            if current.done:
                _settle("completed", lambda s: SessionResponse.completed(s.results))
                return
            logger.warning(
                f"[Watcher] Session {session_id} timed out after {timeout:.0f}s "
                f"({current.completed_count}/{current.expected_total}); returning partial results"
            )
            _settle("timeout", lambda s: SessionResponse.timed_out(s.results))

        if session.done:
            # Nothing to wait for (e.g. an empty target list).
            _settle("completed", lambda s: SessionResponse.completed(s.results))
            return

        poll = self._scheduler.call_every(self._poll_interval, _poll, name=f"poll-{session_id}")
        guard = self._scheduler.call_later(timeout, _timeout, name=f"timeout-{session_id}")
        self._registry.add_cleanup(session_id, poll.cancel)
        self._registry.add_cleanup(session_id, guard.cancel)
