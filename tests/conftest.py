from __future__ import annotations

from pathlib import Path

import pytest

from storyweave.config import Settings
from storyweave.modules.persistence.gateway import MirroredPersistenceGateway
from storyweave.modules.persistence.local import LocalPersistence
from storyweave.modules.session.engine import SessionEngine
from tests.support.story_stubs import StubGenerator


@pytest.fixture()
def config(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        llm_api_key="k",
        llm_base_url="https://example.com/",
        llm_model="demo-model",
        llm_stream_enabled=False,
        story_language="en",
        local_store_path=str(tmp_path / "game-state.json"),
        remote_database_url="",
    )


@pytest.fixture()
def local_store(config: Settings) -> LocalPersistence:
    return LocalPersistence(config.local_store_path)


@pytest.fixture()
def generator() -> StubGenerator:
    return StubGenerator()


@pytest.fixture()
def engine(config: Settings, local_store: LocalPersistence, generator: StubGenerator) -> SessionEngine:
    return SessionEngine(config, MirroredPersistenceGateway(local_store), generator=generator)
