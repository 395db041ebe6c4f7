"""Session registry: the one table of in-flight orchestration sessions."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set

from loguru import logger

from models.session import SessionKind, SessionResponse
from utils.helpers import new_session_id

Cleanup = Callable[[], None]


@dataclass
class Session:
    """Mutable record of one orchestration run."""

    id: str
    kind: SessionKind
    targets: List[str]
    expected_total: int
    completed_count: int = 0
    worker_id: Optional[int] = None
    aborted: bool = False

    # Fan-out results arrive unordered; sequential results are index-addressed.
    fanout_results: List[Dict[str, Any]] = field(default_factory=list)
    indexed_results: Dict[int, Dict[str, Any]] = field(default_factory=dict)
    reported_targets: Set[str] = field(default_factory=set)
    worker_tabs: Dict[str, int] = field(default_factory=dict)

    response: "asyncio.Future[SessionResponse]" = field(default=None, repr=False)  # type: ignore[assignment]
    cleanups: List[Cleanup] = field(default_factory=list, repr=False)

    @property
    def done(self) -> bool:
        return self.completed_count >= self.expected_total

    @property
    def results(self) -> List[Dict[str, Any]]:
        if self.kind == SessionKind.SEQUENTIAL:
            return [self.indexed_results[i] for i in sorted(self.indexed_results)]
        return list(self.fanout_results)


class SessionRegistry:
    """
    Injectable owner of every in-flight :class:`Session`.

    A session produces exactly one terminal response: :meth:`finish` pops it
    from the table, resolves its future and runs its cleanups. Every later
    call for that id (late results, a losing timeout, a second abort) finds
    nothing and is a silent no-op.
    """

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._closed = False

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def create(
        self,
        kind: SessionKind,
        targets: List[str],
        expected_total: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> Session:
        if self._closed:
            raise RuntimeError("Session registry is closed")
        sid = session_id or new_session_id()
        while sid in self._sessions:
            sid = new_session_id()
        session = Session(
            id=sid,
            kind=kind,
            targets=list(targets),
            expected_total=len(targets) if expected_total is None else expected_total,
        )
        session.response = asyncio.get_running_loop().create_future()
        self._sessions[sid] = session
        logger.info(f"[Registry] Session {sid} created ({kind.value}, {session.expected_total} expected)")
        return session

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def ids(self) -> List[str]:
        return list(self._sessions)

    def find_by_worker(self, tab_id: int) -> Optional[Session]:
        for session in self._sessions.values():
            if session.worker_id == tab_id:
                return session
        return None

    def add_cleanup(self, session_id: str, cleanup: Cleanup) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.cleanups.append(cleanup)
        return True

    def append_results(
        self,
        session_id: str,
        results: List[Dict[str, Any]],
        target_name: Optional[str] = None,
    ) -> bool:
        """Add one worker's batch to a fan-out session and count it as completed."""
        session = self._sessions.get(session_id)
        if session is None or session.aborted:
            return False
        if target_name is not None:
            if target_name in session.reported_targets:
                logger.warning(f"[Registry] Duplicate delivery from {target_name} for {session_id} ignored")
                return False
            session.reported_targets.add(target_name)
        session.fanout_results.extend(results)
        session.completed_count += 1
        logger.info(
            f"[Registry] {target_name or 'worker'} reported {len(results)} result(s) "
            f"for {session_id}: {session.completed_count}/{session.expected_total}"
        )
        return True

    def record_item(self, session_id: str, index: int, record: Dict[str, Any]) -> bool:
        """Store the outcome of item ``index`` of a sequential session, once."""
        session = self._sessions.get(session_id)
        if session is None or session.aborted:
            return False
        if not 0 <= index < len(session.targets):
            logger.warning(f"[Registry] Item index {index} out of range for {session_id} ({len(session.targets)} items)")
            return False
        if index in session.indexed_results:
            logger.debug(f"[Registry] Item {index} of {session_id} already recorded")
            return False
        session.indexed_results[index] = record
        session.completed_count += 1
        logger.info(f"[Registry] Item {index} recorded for {session_id}: {session.completed_count}/{session.expected_total}")
        return True

    def mark_aborted(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        if session is None:
            return False
        session.aborted = True
        return True

    def finish(self, session_id: str, response: SessionResponse) -> bool:
        """Deliver the session's terminal response. Returns False if already finished."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        self._run_cleanups(session)
        if not session.response.done():
            session.response.set_result(response)
        outcome = "ok" if response.success else f"failed ({response.error})"
        partial = " partial" if response.partial else ""
        logger.info(f"[Registry] Session {session_id} finished{partial}: {outcome}")
        return True

    def remove(self, session_id: str) -> bool:
        """Drop a session without answering it."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        self._run_cleanups(session)
        if not session.response.done():
            session.response.cancel()
        return True

    def close(self, reason: str = "orchestrator shutting down") -> None:
        for session_id in list(self._sessions):
            self.mark_aborted(session_id)
            self.finish(session_id, SessionResponse.failed(reason))
        self._closed = True

    @staticmethod
    def _run_cleanups(session: Session) -> None:
        cleanups, session.cleanups = session.cleanups, []
        for cleanup in cleanups:
            try:
                cleanup()
            except Exception as exc:
                logger.exception(f"[Registry] Cleanup for {session.id} failed: {exc}")
