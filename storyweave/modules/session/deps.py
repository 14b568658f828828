from __future__ import annotations

import logging
from functools import lru_cache

from storyweave.config import settings
from storyweave.modules.persistence.gateway import build_gateway
from storyweave.modules.session.engine import SessionEngine

log = logging.getLogger("storyweave")


@lru_cache(maxsize=1)
def get_engine() -> SessionEngine:
    """Process-wide engine for the single local player, resumed from storage on first use."""
    gateway = build_gateway(settings, user_id=settings.player_id or None)
    engine = SessionEngine(settings, gateway)
    engine.load_state()
    return engine


def shutdown_engine() -> None:
    if get_engine.cache_info().currsize:
        get_engine().gateway.close()
        get_engine.cache_clear()
        log.info("session_engine: shut down")
