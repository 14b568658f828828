from __future__ import annotations

import itertools
import threading
import time
from datetime import datetime, timezone


def utc_now_aware() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_naive() -> datetime:
    return utc_now_aware().astimezone(timezone.utc).replace(tzinfo=None)


def now_ms() -> int:
    return int(time.time() * 1000)


def next_update_ms(previous: int | None) -> int:
    """Wall-clock milliseconds, bumped past ``previous`` so update stamps never go backwards."""
    current = now_ms()
    if previous is not None and current <= int(previous):
        return int(previous) + 1
    return current


class IdFactory:
    """Timestamp + process-local counter ids, e.g. ``node_1712345678901_3``."""

    def __init__(self) -> None:
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    def new_id(self, prefix: str) -> str:
        with self._lock:
            seq = next(self._counter)
        return f"{prefix}_{now_ms()}_{seq}"
