from __future__ import annotations

import logging

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from storyweave.db.models import ActiveSessionPointer, DeletedSave, UserSave
from storyweave.modules.persistence.base import ActivePointer, PersistenceGateway
from storyweave.modules.persistence.errors import PersistenceError
from storyweave.modules.story.codec import export_document, parse_document
from storyweave.modules.story.errors import ImportValidationError
from storyweave.modules.story.models import GameRecord
from storyweave.utils.time import now_ms

log = logging.getLogger("storyweave")


class RemotePersistence(PersistenceGateway):
    """Per-user save rows in a SQL database, one row per session id."""

    def __init__(self, session_factory: sessionmaker[Session], *, user_id: str):
        if not str(user_id or "").strip():
            raise ValueError("remote persistence requires a user id")
        self._session_factory = session_factory
        self.user_id = str(user_id)

    def save(self, record: GameRecord) -> None:
        document = export_document(record)
        try:
            with self._session_factory() as db:
                row = db.execute(
                    select(UserSave).where(UserSave.user_id == self.user_id, UserSave.save_name == record.id)
                ).scalar_one_or_none()
                if row is None:
                    row = UserSave(user_id=self.user_id, save_name=record.id)
                    db.add(row)
                row.game_name = record.name
                row.game_mode = record.game_mode
                row.save_data = document
                row.current_node = record.current_node_id
                row.total_pages = record.total_pages
                row.record_updated_at = record.updated_at
                db.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"remote save failed for {record.id}: {exc}") from exc

    def delete(self, record_id: str, deleted_at: int | None = None) -> None:
        stamp = now_ms() if deleted_at is None else int(deleted_at)
        try:
            with self._session_factory() as db:
                db.execute(delete(UserSave).where(UserSave.user_id == self.user_id, UserSave.save_name == record_id))
                marker = db.get(DeletedSave, (self.user_id, record_id))
                if marker is None:
                    db.add(DeletedSave(user_id=self.user_id, save_name=record_id, deleted_at=stamp))
                else:
                    marker.deleted_at = max(stamp, int(marker.deleted_at or 0))
                db.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"remote delete failed for {record_id}: {exc}") from exc

    def save_active_pointer(self, session_id: str | None) -> None:
        try:
            with self._session_factory() as db:
                row = db.get(ActiveSessionPointer, self.user_id)
                if row is None:
                    row = ActiveSessionPointer(user_id=self.user_id)
                    db.add(row)
                row.session_id = session_id
                row.pointer_updated_at = now_ms()
                db.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"remote pointer save failed: {exc}") from exc

    def load_records(self) -> dict[str, GameRecord]:
        try:
            with self._session_factory() as db:
                rows = db.execute(
                    select(UserSave)
                    .where(UserSave.user_id == self.user_id)
                    .order_by(UserSave.record_updated_at.desc())
                ).scalars().all()
                entries = [(row.save_name, row.save_data, row.record_updated_at) for row in rows]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"remote load failed: {exc}") from exc

        records: dict[str, GameRecord] = {}
        for save_name, save_data, updated_at in entries:
            try:
                records[save_name] = parse_document(save_data or {}, record_id=save_name, updated_at=updated_at)
            except (ImportValidationError, TypeError, ValueError) as exc:
                log.warning("remote_store: skipping unreadable save %s: %s", save_name, exc)
        return records

    def load_deletions(self) -> dict[str, int]:
        try:
            with self._session_factory() as db:
                rows = db.execute(select(DeletedSave).where(DeletedSave.user_id == self.user_id)).scalars().all()
                return {row.save_name: int(row.deleted_at or 0) for row in rows}
        except SQLAlchemyError as exc:
            raise PersistenceError(f"remote deletion markers load failed: {exc}") from exc

    def load_pointer(self) -> ActivePointer | None:
        try:
            with self._session_factory() as db:
                row = db.get(ActiveSessionPointer, self.user_id)
                if row is None:
                    return None
                return ActivePointer(session_id=row.session_id, updated_at=int(row.pointer_updated_at or 0))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"remote pointer load failed: {exc}") from exc
