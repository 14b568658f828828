from __future__ import annotations

from collections.abc import Iterable

from storyweave.modules.story.errors import AlreadyFinalizedError, DuplicateNodeError, NodeNotFoundError
from storyweave.modules.story.models import StoryNode


class NarrativeGraphStore:
    """Node table keyed by id plus the append-only page order.

    Only the session engine mutates a store; there is no locking here.
    """

    def __init__(self) -> None:
        self._nodes: dict[str, StoryNode] = {}
        self._order: list[str] = []

    def reset(self) -> None:
        self._nodes.clear()
        self._order.clear()

    def insert(self, node: StoryNode) -> None:
        if node.id in self._nodes:
            raise DuplicateNodeError(node.id)
        self._nodes[node.id] = node
        self._order.append(node.id)

    def get(self, node_id: str) -> StoryNode:
        node = self._nodes.get(node_id)
        if node is None:
            raise NodeNotFoundError(node_id)
        return node

    def contains(self, node_id: str) -> bool:
        return node_id in self._nodes

    def mark_selected_choice(self, node_id: str, choice_text: str) -> StoryNode:
        node = self.get(node_id)
        if node.selected_choice is None:
            node.selected_choice = choice_text
        elif node.selected_choice != choice_text:
            raise AlreadyFinalizedError(node_id, existing=node.selected_choice, attempted=choice_text)
        return node

    def page_order(self) -> list[str]:
        return list(self._order)

    def page_count(self) -> int:
        return len(self._order)

    def node_at(self, page_index: int) -> StoryNode:
        if page_index < 0 or page_index >= len(self._order):
            raise NodeNotFoundError(f"page {page_index}")
        return self._nodes[self._order[page_index]]

    def index_of(self, node_id: str) -> int:
        try:
            return self._order.index(node_id)
        except ValueError as exc:
            raise NodeNotFoundError(node_id) from exc

    def load(self, nodes: Iterable[StoryNode]) -> None:
        self.reset()
        for node in nodes:
            self.insert(node.model_copy(deep=True))

    def snapshot(self) -> list[StoryNode]:
        return [self._nodes[node_id].model_copy(deep=True) for node_id in self._order]
