"""Pydantic models for orchestration sessions, checkpoints and responses."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class SessionKind(str, Enum):
    """How a session's work is spread across worker tabs."""

    FAN_OUT = "fan_out"
    SEQUENTIAL = "sequential"


class ListingStage(str, Enum):
    """Progress of the single-item mark-listed workflow."""

    SEARCH = "search"
    EDIT = "edit"
    SAVED = "saved"


class SessionResponse(BaseModel):
    """The single terminal response a session produces."""

    success: bool
    results: Optional[List[Dict[str, Any]]] = None
    partial: Optional[bool] = None
    error: Optional[str] = None

    @classmethod
    def completed(cls, results: List[Dict[str, Any]]) -> "SessionResponse":
        return cls(success=True, results=results)

    @classmethod
    def timed_out(cls, results: List[Dict[str, Any]]) -> "SessionResponse":
        return cls(success=True, results=results, partial=True)

    @classmethod
    def failed(cls, error: str) -> "SessionResponse":
        return cls(success=False, error=error)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class Checkpoint(BaseModel):
    """Durable progress of a sequential session.

    ``next_index`` is advanced *before* the worker is told to submit an item,
    so after the page reloads ``next_index - 1`` names the item whose outcome
    is on screen. ``last_recorded_index`` is the highest index already emitted.
    """

    session_id: str = Field(..., alias="sessionId")
    items: List[str] = Field(default_factory=list)
    next_index: int = Field(default=0, alias="nextIndex", ge=0)
    last_recorded_index: int = Field(default=-1, alias="lastRecordedIndex")
    tab_id: Optional[int] = Field(default=None, alias="tabId")
    updated_at: datetime = Field(default_factory=datetime.utcnow, alias="updatedAt")

    model_config = {"populate_by_name": True}

    @property
    def previous_index(self) -> int:
        return self.next_index - 1

    @property
    def finished(self) -> bool:
        return self.next_index >= len(self.items)

    def has_unrecorded_outcome(self) -> bool:
        """True when the page on screen is the outcome of an item not yet emitted."""
        prev = self.previous_index
        return 0 <= prev < len(self.items) and prev > self.last_recorded_index


class PendingUpdate(BaseModel):
    """Durable progress of the mark-listed workflow."""

    session_id: str = Field(..., alias="sessionId")
    pending_identifier: str = Field(..., alias="pendingIdentifier")
    stage: ListingStage = ListingStage.SEARCH
    tab_id: Optional[int] = Field(default=None, alias="tabId")
    updated_at: datetime = Field(default_factory=datetime.utcnow, alias="updatedAt")

    model_config = {"populate_by_name": True}


def not_found_record(item: str) -> Dict[str, Any]:
    return {"barcode": item, "notFound": True}


def error_record(item: str, error: str) -> Dict[str, Any]:
    return {"barcode": item, "error": error}
