"""Message protocol shared by callers, the orchestrator and tab workers.

Every message is an ``{"action": ..., "data": {...}}`` envelope. Payload keys
are camelCase on the wire; the models accept either spelling.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Action(str, Enum):
    # caller -> orchestrator
    START_FANOUT = "start-fanout"
    START_SEQUENTIAL = "start-sequential"
    START_MARK_LISTED = "start-mark-listed"
    # worker -> orchestrator
    DELIVER_RESULT = "deliver-result"
    WORKER_READY = "worker-ready"
    # orchestrator -> worker
    START_WORK = "start-work"
    ABORT_WORK = "abort-work"
    EXTRACT_RECORD = "extract-record"
    SUBMIT_ITEM = "submit-item"
    READ_LISTED_FLAG = "read-listed-flag"
    SET_LISTED = "set-listed"


REQUEST_ACTIONS = {Action.START_FANOUT, Action.START_SEQUENTIAL, Action.START_MARK_LISTED}


class Message(BaseModel):
    action: Action
    data: Dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> Dict[str, Any]:
        return {"action": self.action.value, "data": self.data}


class _Payload(BaseModel):
    model_config = {"populate_by_name": True, "extra": "ignore"}


class CategoryHints(_Payload):
    """Optional narrowing applied when building a competitor search URL."""

    category: Optional[str] = None
    subcategory: Optional[str] = None
    model: Optional[str] = None
    attributes: Dict[str, str] = Field(default_factory=dict)


class FanOutRequest(_Payload):
    query: str = Field(..., min_length=1)
    target_list: List[str] = Field(default_factory=list, alias="targetList")
    category_hints: CategoryHints = Field(default_factory=CategoryHints, alias="categoryHints")


class SequentialRequest(_Payload):
    item_list: List[str] = Field(default_factory=list, alias="itemList")


class MarkListedRequest(_Payload):
    identifier: str = Field(..., min_length=1)


class FanOutDelivery(_Payload):
    session_id: str = Field(..., alias="sessionId")
    target_name: Optional[str] = Field(default=None, alias="targetName")
    results: List[Dict[str, Any]] = Field(default_factory=list)


class SequentialDelivery(_Payload):
    session_id: str = Field(..., alias="sessionId")
    result_record: Dict[str, Any] = Field(..., alias="resultRecord")
    index: Optional[int] = Field(default=None, ge=0)
