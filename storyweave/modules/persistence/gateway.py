from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from storyweave.config import Settings, remote_store_enabled
from storyweave.modules.persistence.base import ActivePointer, PersistenceGateway
from storyweave.modules.persistence.local import LocalPersistence
from storyweave.modules.persistence.reconcile import reconcile_deletions, reconcile_pointer, reconcile_records
from storyweave.modules.story.models import GameRecord, SessionCollection
from storyweave.utils.time import now_ms

log = logging.getLogger("storyweave")


class MirroredPersistenceGateway(PersistenceGateway):
    """Local cache first, remote store mirrored best effort.

    Local write failures propagate. Remote failures are logged and never
    reach the caller. On load both sides are merged last-writer-wins and
    any record older than its deletion marker on either side is dropped.
    """

    def __init__(
        self,
        local: PersistenceGateway,
        remote: PersistenceGateway | None = None,
        *,
        background: bool = True,
    ):
        self.local = local
        self.remote = remote
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="storyweave-mirror") if (
            remote is not None and background
        ) else None
        self._pending: list[Future] = []

    def save(self, record: GameRecord) -> None:
        self.local.save(record)
        if self.remote is None:
            return
        snapshot = record.model_copy(deep=True)
        self._mirror("save", lambda remote: remote.save(snapshot))

    def delete(self, record_id: str, deleted_at: int | None = None) -> None:
        stamp = now_ms() if deleted_at is None else int(deleted_at)
        self.local.delete(record_id, stamp)
        self._mirror("delete", lambda remote: remote.delete(record_id, stamp))

    def save_active_pointer(self, session_id: str | None) -> None:
        self.local.save_active_pointer(session_id)
        self._mirror("pointer", lambda remote: remote.save_active_pointer(session_id))

    def load_records(self) -> dict[str, GameRecord]:
        local_records = self.local.load_records()
        remote_records = self._remote_load("records", lambda remote: remote.load_records()) or {}
        self._retry_remote_deletes(remote_records)
        return reconcile_records(local_records, remote_records)

    def load_deletions(self) -> dict[str, int]:
        remote_deletions = self._remote_load("deletions", lambda remote: remote.load_deletions()) or {}
        return reconcile_deletions(self.local.load_deletions(), remote_deletions)

    def load_pointer(self) -> ActivePointer | None:
        local_pointer = self.local.load_pointer()
        remote_pointer = self._remote_load("pointer", lambda remote: remote.load_pointer())
        return reconcile_pointer([local_pointer, remote_pointer])

    def load_all(self) -> SessionCollection:
        self.flush()
        return super().load_all()

    def flush(self) -> None:
        pending, self._pending = self._pending, []
        for future in pending:
            future.result()

    def close(self) -> None:
        self.flush()
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None
        for backend in (self.local, self.remote):
            if backend is not None:
                backend.close()

    def _mirror(self, op: str, call: Callable[[PersistenceGateway], None]) -> None:
        if self.remote is None:
            return
        remote = self.remote

        def _run() -> None:
            try:
                call(remote)
            except Exception as exc:
                log.warning("persistence: remote %s failed: %s", op, exc)

        if self._executor is None:
            _run()
            return
        self._pending = [future for future in self._pending if not future.done()]
        self._pending.append(self._executor.submit(_run))

    def _retry_remote_deletes(self, remote_records: dict[str, GameRecord]) -> None:
        """Re-issue remote deletes that never landed, so other devices stop seeing the record."""
        for record_id, deleted_at in self.local.load_deletions().items():
            stale = remote_records.get(record_id)
            if stale is None or stale.updated_at > deleted_at:
                continue
            log.info("persistence: retrying remote delete of %s", record_id)
            self._mirror("delete", lambda remote, rid=record_id, stamp=deleted_at: remote.delete(rid, stamp))

    def _remote_load(self, what: str, call: Callable[[PersistenceGateway], object]):
        if self.remote is None:
            return None
        try:
            return call(self.remote)
        except Exception as exc:
            log.warning("persistence: remote %s load failed, using local cache only: %s", what, exc)
            return None


def build_gateway(
    config: Settings,
    *,
    user_id: str | None = None,
    background: bool = True,
) -> MirroredPersistenceGateway:
    local = LocalPersistence(config.local_store_path)
    remote: PersistenceGateway | None = None
    if remote_store_enabled(config) and user_id:
        from storyweave.db.session import create_schema, make_engine, make_session_factory
        from storyweave.modules.persistence.remote import RemotePersistence

        engine = make_engine(str(config.remote_database_url))
        create_schema(engine)
        remote = RemotePersistence(make_session_factory(engine), user_id=user_id)
        log.info("persistence: remote mirror enabled for user %s", user_id)
    return MirroredPersistenceGateway(local, remote, background=background)
