"""Persistent checkpoint store backed by JSON files."""

from __future__ import annotations

import json
import os
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Type, TypeVar

from loguru import logger
from pydantic import BaseModel, ValidationError

from config.settings import settings
from models.session import Checkpoint, PendingUpdate

_M = TypeVar("_M", bound=BaseModel)


class CheckpointStore:
    """
    Simple file-backed store for sequential workflow progress.

    Each session owns at most one file per record type under `data_dir/`:
    `<session_id>.checkpoint.json` for the barcode lookup and
    `<session_id>.pending.json` for the mark-listed workflow. Writes go to a
    temporary file that is then swapped in with `os.replace`, so a reader
    never observes a half-written record.
    """

    CHECKPOINT_SUFFIX = ".checkpoint.json"
    PENDING_SUFFIX = ".pending.json"

    def __init__(self, data_dir: Optional[str] = None) -> None:
        self._data_dir = Path(data_dir or settings.checkpoint_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _path(self, session_id: str, suffix: str) -> Path:
        safe = "".join(ch for ch in session_id if ch.isalnum() or ch in "-_")
        if not safe:
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self._data_dir / f"{safe}{suffix}"

    def _write(self, path: Path, record: BaseModel) -> None:
        tmp = path.with_suffix(path.suffix + ".tmp")
        with open(tmp, "w", encoding="utf-8") as fh:
            json.dump(record.model_dump(mode="json", by_alias=True), fh, indent=2)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)

    def _read(self, path: Path, model: Type[_M]) -> Optional[_M]:
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as fh:
                return model.model_validate(json.load(fh))
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning(f"Discarding unreadable record {path}: {exc}")
            path.unlink(missing_ok=True)
            return None

    # ── Sequential checkpoints ────────────────────────────────────────────────

    def save_checkpoint(self, checkpoint: Checkpoint) -> None:
        checkpoint.updated_at = datetime.utcnow()
        self._write(self._path(checkpoint.session_id, self.CHECKPOINT_SUFFIX), checkpoint)

    def load_checkpoint(self, session_id: str) -> Optional[Checkpoint]:
        return self._read(self._path(session_id, self.CHECKPOINT_SUFFIX), Checkpoint)

    def delete_checkpoint(self, session_id: str) -> None:
        self._path(session_id, self.CHECKPOINT_SUFFIX).unlink(missing_ok=True)

    # ── Mark-listed pending identifier ────────────────────────────────────────

    def save_pending(self, pending: PendingUpdate) -> None:
        pending.updated_at = datetime.utcnow()
        self._write(self._path(pending.session_id, self.PENDING_SUFFIX), pending)

    def load_pending(self, session_id: str) -> Optional[PendingUpdate]:
        return self._read(self._path(session_id, self.PENDING_SUFFIX), PendingUpdate)

    def delete_pending(self, session_id: str) -> None:
        self._path(session_id, self.PENDING_SUFFIX).unlink(missing_ok=True)

    # ── Housekeeping ──────────────────────────────────────────────────────────

    def discard(self, session_id: str) -> None:
        """Remove every record belonging to a session."""
        self.delete_checkpoint(session_id)
        self.delete_pending(session_id)

    def session_ids(self) -> List[str]:
        """Session ids that currently have a record on disk."""
        ids = set()
        for suffix in (self.CHECKPOINT_SUFFIX, self.PENDING_SUFFIX):
            for path in self._data_dir.glob(f"*{suffix}"):
                ids.add(path.name[: -len(suffix)])
        return sorted(ids)

    def purge_stale(self, live_session_ids: List[str]) -> int:
        """Delete records whose session is no longer in flight (e.g. after a restart)."""
        removed = 0
        for session_id in self.session_ids():
            if session_id not in live_session_ids:
                self.discard(session_id)
                removed += 1
        if removed:
            logger.info(f"Purged {removed} stale checkpoint(s) from {self._data_dir}")
        return removed
