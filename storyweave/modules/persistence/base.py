from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from storyweave.modules.persistence.reconcile import reconcile_records
from storyweave.modules.story.models import GameRecord, SessionCollection


@dataclass(frozen=True)
class ActivePointer:
    session_id: str | None
    updated_at: int


class PersistenceGateway(ABC):
    """Whole-record storage. Gateways read records to save them and build records on load; they never edit them."""

    @abstractmethod
    def save(self, record: GameRecord) -> None: ...

    @abstractmethod
    def delete(self, record_id: str, deleted_at: int | None = None) -> None:
        """Remove the record and remember the deletion, stamped ``deleted_at`` (now when omitted)."""

    @abstractmethod
    def save_active_pointer(self, session_id: str | None) -> None: ...

    @abstractmethod
    def load_records(self) -> dict[str, GameRecord]: ...

    @abstractmethod
    def load_pointer(self) -> ActivePointer | None: ...

    def load_deletions(self) -> dict[str, int]:
        return {}

    def load_all(self) -> SessionCollection:
        records = reconcile_records(self.load_records(), deletions=self.load_deletions())
        pointer = self.load_pointer()
        active_id = pointer.session_id if pointer is not None else None
        if active_id not in records:
            active_id = None
        return SessionCollection(records=records, active_id=active_id)

    def close(self) -> None:
        return None
