from __future__ import annotations


class StoryGraphError(RuntimeError):
    """Raised when the narrative graph is used against its invariants."""


class DuplicateNodeError(StoryGraphError):
    def __init__(self, node_id: str):
        super().__init__(f"node already present: {node_id}")
        self.node_id = node_id


class NodeNotFoundError(StoryGraphError, KeyError):
    def __init__(self, node_id: str):
        super().__init__(f"node not found: {node_id}")
        self.node_id = node_id

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class AlreadyFinalizedError(StoryGraphError):
    def __init__(self, node_id: str, *, existing: str, attempted: str):
        super().__init__(f"node {node_id} already finalized with {existing!r}, got {attempted!r}")
        self.node_id = node_id
        self.existing = existing
        self.attempted = attempted


class ImportValidationError(ValueError):
    """Raised when an import document is malformed. Nothing is imported."""
