"""Abstract browser host: the tabs the orchestrator drives as workers.

Implementations (the extension gateway, the in-memory fake used by tests)
provide the tab RPCs; tab lifecycle events are fanned out to subscribers
through explicit :class:`Subscription` handles that must be cancelled on
every terminal path.
"""

from __future__ import annotations

import abc
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from loguru import logger


class BrowserHostError(RuntimeError):
    """A tab RPC failed, timed out, or the browser is not connected."""


@dataclass(frozen=True)
class TabInfo:
    tab_id: int
    url: str = ""
    status: str = ""
    active: bool = False


@dataclass(frozen=True)
class TabUpdate:
    """A navigation progress event for one tab (``loading`` or ``complete``)."""

    tab_id: int
    status: str
    url: str = ""

    @property
    def is_loading(self) -> bool:
        return self.status == "loading"

    @property
    def is_complete(self) -> bool:
        return self.status == "complete"


UpdateListener = Callable[[TabUpdate], None]
RemovedListener = Callable[[int], None]


class Subscription:
    """Handle returned by a subscribe call. ``cancel()`` is idempotent."""

    def __init__(self, hub: "_ListenerSet", key: int) -> None:
        self._hub = hub
        self._key = key
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if self._active:
            self._active = False
            self._hub.discard(self._key)


class _ListenerSet:
    def __init__(self, name: str) -> None:
        self._name = name
        self._next_key = 1
        self._listeners: Dict[int, Callable[[Any], None]] = {}

    def add(self, listener: Callable[[Any], None]) -> Subscription:
        key = self._next_key
        self._next_key += 1
        self._listeners[key] = listener
        return Subscription(self, key)

    def discard(self, key: int) -> None:
        self._listeners.pop(key, None)

    def __len__(self) -> int:
        return len(self._listeners)

    def emit(self, event: Any) -> None:
        # Snapshot: listeners may unsubscribe themselves while handling.
        for key, listener in list(self._listeners.items()):
            if key not in self._listeners:
                continue
            try:
                listener(event)
            except Exception as exc:
                logger.exception(f"{self._name} listener failed: {exc}")


class BrowserHost(abc.ABC):
    """Tab operations plus publish/subscribe for tab lifecycle events."""

    def __init__(self) -> None:
        self._updated = _ListenerSet("tab-updated")
        self._removed = _ListenerSet("tab-removed")

    # ── Tab RPCs ──────────────────────────────────────────────────────────────

    @abc.abstractmethod
    async def create_tab(self, url: str, active: bool = False) -> int:
        ...

    @abc.abstractmethod
    async def navigate(self, tab_id: int, url: str, active: Optional[bool] = None) -> None:
        ...

    @abc.abstractmethod
    async def close_tab(self, tab_id: int) -> None:
        ...

    @abc.abstractmethod
    async def find_tabs(self, url_pattern: str) -> List[TabInfo]:
        """Tabs whose URL matches a Chrome match pattern such as ``https://site/*``."""

    @abc.abstractmethod
    async def get_tab(self, tab_id: int) -> Optional[TabInfo]:
        ...

    @abc.abstractmethod
    async def send_message(self, tab_id: int, message: Dict[str, Any]) -> Any:
        """Deliver a message to the worker running in a tab and return its reply."""

    # ── Events ────────────────────────────────────────────────────────────────

    def on_updated(self, listener: UpdateListener) -> Subscription:
        return self._updated.add(listener)

    def on_removed(self, listener: RemovedListener) -> Subscription:
        return self._removed.add(listener)

    def listener_count(self) -> int:
        return len(self._updated) + len(self._removed)

    def emit_updated(self, update: TabUpdate) -> None:
        self._updated.emit(update)

    def emit_removed(self, tab_id: int) -> None:
        self._removed.emit(tab_id)
