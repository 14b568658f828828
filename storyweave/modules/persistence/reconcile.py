from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING

from storyweave.modules.story.models import GameRecord

if TYPE_CHECKING:
    from storyweave.modules.persistence.base import ActivePointer


def reconcile_records(
    *sources: Mapping[str, GameRecord],
    deletions: Mapping[str, int] | None = None,
) -> dict[str, GameRecord]:
    """Last writer wins per session id, on ``updated_at``, at whole-record granularity.

    Ties keep the copy from the earlier source. A record whose ``updated_at`` is
    not newer than its deletion stamp is dropped.
    """
    merged: dict[str, GameRecord] = {}
    for source in sources:
        for record_id, record in source.items():
            current = merged.get(record_id)
            if current is None or record.updated_at > current.updated_at:
                merged[record_id] = record
    for record_id, deleted_at in (deletions or {}).items():
        record = merged.get(record_id)
        if record is not None and record.updated_at <= deleted_at:
            del merged[record_id]
    return merged


def reconcile_deletions(*sources: Mapping[str, int]) -> dict[str, int]:
    merged: dict[str, int] = {}
    for source in sources:
        for record_id, deleted_at in source.items():
            merged[record_id] = max(int(deleted_at), merged.get(record_id, 0))
    return merged


def reconcile_pointer(pointers: Iterable[ActivePointer | None]) -> ActivePointer | None:
    winner: ActivePointer | None = None
    for pointer in pointers:
        if pointer is None:
            continue
        if winner is None or pointer.updated_at > winner.updated_at:
            winner = pointer
    return winner
