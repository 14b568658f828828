from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from storyweave.modules.persistence.base import ActivePointer, PersistenceGateway
from storyweave.modules.persistence.errors import PersistenceError
from storyweave.modules.story.codec import export_document, parse_document
from storyweave.modules.story.errors import ImportValidationError
from storyweave.modules.story.models import GameRecord
from storyweave.utils.time import now_ms

log = logging.getLogger("storyweave")

STATE_FORMAT_VERSION = 1


class LocalPersistence(PersistenceGateway):
    """Single JSON file cache holding every record plus the active pointer.

    Layout::

        {"version": 1,
         "activeSession": {"id": ..., "updatedAt": ...},
         "deletedSessions": {id: deletedAt},
         "records": {id: {"id": ..., "updatedAt": ..., "document": {...}}}}
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def save(self, record: GameRecord) -> None:
        with self._lock:
            state = self._read_state()
            state["records"][record.id] = {
                "id": record.id,
                "updatedAt": record.updated_at,
                "document": export_document(record),
            }
            self._write_state(state)

    def delete(self, record_id: str, deleted_at: int | None = None) -> None:
        stamp = now_ms() if deleted_at is None else int(deleted_at)
        with self._lock:
            state = self._read_state()
            state["records"].pop(record_id, None)
            deletions = state.get("deletedSessions")
            if not isinstance(deletions, dict):
                deletions = state["deletedSessions"] = {}
            deletions[record_id] = max(stamp, int(deletions.get(record_id) or 0))
            self._write_state(state)

    def save_active_pointer(self, session_id: str | None) -> None:
        with self._lock:
            state = self._read_state()
            state["activeSession"] = {"id": session_id, "updatedAt": now_ms()}
            self._write_state(state)

    def load_records(self) -> dict[str, GameRecord]:
        with self._lock:
            state = self._read_state()
        records: dict[str, GameRecord] = {}
        for record_id, entry in state["records"].items():
            if not isinstance(entry, dict):
                log.warning("local_store: skipping malformed entry %s", record_id)
                continue
            try:
                records[record_id] = parse_document(
                    entry.get("document") or {},
                    record_id=record_id,
                    updated_at=int(entry.get("updatedAt") or 0),
                )
            except (ImportValidationError, TypeError, ValueError) as exc:
                log.warning("local_store: skipping unreadable record %s: %s", record_id, exc)
        return records

    def load_deletions(self) -> dict[str, int]:
        with self._lock:
            state = self._read_state()
        deletions = state.get("deletedSessions")
        if not isinstance(deletions, dict):
            return {}
        stamps: dict[str, int] = {}
        for record_id, deleted_at in deletions.items():
            try:
                stamps[str(record_id)] = int(deleted_at)
            except (TypeError, ValueError):
                log.warning("local_store: skipping malformed deletion marker %s", record_id)
        return stamps

    def load_pointer(self) -> ActivePointer | None:
        with self._lock:
            state = self._read_state()
        pointer = state.get("activeSession")
        if not isinstance(pointer, dict):
            return None
        session_id = pointer.get("id")
        return ActivePointer(
            session_id=str(session_id) if session_id else None,
            updated_at=int(pointer.get("updatedAt") or 0),
        )

    def _empty_state(self) -> dict:
        return {"version": STATE_FORMAT_VERSION, "activeSession": None, "records": {}, "deletedSessions": {}}

    def _read_state(self) -> dict:
        if not self.path.exists():
            return self._empty_state()
        try:
            state = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            log.warning("local_store: unreadable cache %s, starting empty: %s", self.path, exc)
            return self._empty_state()
        if not isinstance(state, dict) or not isinstance(state.get("records"), dict):
            log.warning("local_store: unexpected cache layout in %s, starting empty", self.path)
            return self._empty_state()
        return state

    def _write_state(self, state: dict) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".game-state-", suffix=".json", dir=self.path.parent)
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(state, handle, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except OSError as exc:
            raise PersistenceError(f"local cache write failed: {exc}") from exc
