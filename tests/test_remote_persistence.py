from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import select

from storyweave.db.models import UserSave
from storyweave.db.session import create_schema, make_engine, make_session_factory
from storyweave.modules.persistence.errors import PersistenceError
from storyweave.modules.persistence.remote import RemotePersistence
from tests.support.story_stubs import make_record


def _factory(tmp_path: Path):
    engine = make_engine(f"sqlite:///{tmp_path / 'remote.db'}")
    create_schema(engine)
    return make_session_factory(engine)


def test_save_upserts_one_row_per_session(tmp_path: Path) -> None:
    factory = _factory(tmp_path)
    store = RemotePersistence(factory, user_id="42")
    record = make_record("game_1", updated_at=100)
    store.save(record)
    record.updated_at = 200
    record.inventory.append("map")
    store.save(record)

    with factory() as db:
        rows = db.execute(select(UserSave)).scalars().all()
    assert len(rows) == 1
    assert rows[0].record_updated_at == 200
    assert rows[0].total_pages == 2
    assert rows[0].save_data["inventory"][-1] == "map"

    loaded = store.load_records()["game_1"]
    assert loaded.updated_at == 200
    assert loaded.inventory == record.inventory


def test_records_are_scoped_per_user(tmp_path: Path) -> None:
    factory = _factory(tmp_path)
    RemotePersistence(factory, user_id="alice").save(make_record("game_1"))
    RemotePersistence(factory, user_id="bob").save(make_record("game_2"))

    assert set(RemotePersistence(factory, user_id="alice").load_records()) == {"game_1"}


def test_pointer_and_delete(tmp_path: Path) -> None:
    factory = _factory(tmp_path)
    store = RemotePersistence(factory, user_id="42")
    assert store.load_pointer() is None

    store.save(make_record("game_1"))
    store.save_active_pointer("game_1")
    assert store.load_all().active_id == "game_1"

    store.delete("game_1")
    store.save_active_pointer(None)
    collection = store.load_all()
    assert collection.records == {}
    assert collection.active_id is None


def test_unreadable_rows_are_skipped(tmp_path: Path) -> None:
    factory = _factory(tmp_path)
    store = RemotePersistence(factory, user_id="42")
    store.save(make_record("game_1"))
    with factory() as db:
        db.add(UserSave(user_id="42", save_name="broken", save_data={"name": "x"}, record_updated_at=5))
        db.commit()

    assert set(store.load_records()) == {"game_1"}


def test_database_errors_become_persistence_errors(tmp_path: Path) -> None:
    engine = make_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    store = RemotePersistence(make_session_factory(engine), user_id="42")
    with pytest.raises(PersistenceError):
        store.save(make_record("game_1"))
    with pytest.raises(PersistenceError):
        store.load_records()


def test_user_id_is_required(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        RemotePersistence(_factory(tmp_path), user_id=" ")


def test_delete_records_a_marker_per_user(tmp_path: Path) -> None:
    factory = _factory(tmp_path)
    store = RemotePersistence(factory, user_id="42")
    store.save(make_record("game_1", updated_at=100))
    store.delete("game_1", 250)
    store.delete("game_1", 200)

    assert store.load_deletions() == {"game_1": 250}
    assert RemotePersistence(factory, user_id="other").load_deletions() == {}

    store.save(make_record("game_1", updated_at=240))
    assert store.load_all().records == {}
