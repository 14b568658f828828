from __future__ import annotations


class PersistenceError(RuntimeError):
    """Raised by a storage backend when a read or write cannot be completed."""
