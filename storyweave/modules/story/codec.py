"""Transport-neutral save document.

Shape::

    {name, timestamp, currentNode, currentPage, variables, inventory,
     history, storyHistory, gameMode, nodes: [[id, node], ...]}

The same document is the export format and the storage payload of both
persistence backends; the record id and update stamp travel beside it.
"""

from __future__ import annotations

import json

from pydantic import ValidationError

from storyweave.modules.story.errors import ImportValidationError
from storyweave.modules.story.models import DEFAULT_GAME_MODE, GameRecord, StoryNode

REQUIRED_DOCUMENT_KEYS = ("nodes", "currentNode")


def export_document(record: GameRecord) -> dict:
    return {
        "name": record.name,
        "timestamp": record.created_at,
        "currentNode": record.current_node_id,
        "currentPage": record.current_page_index,
        "variables": dict(record.variables),
        "inventory": list(record.inventory),
        "history": list(record.history),
        "storyHistory": list(record.story_history),
        "gameMode": record.game_mode,
        "nodes": [[node.id, node.model_dump(by_alias=True, mode="json")] for node in record.nodes],
    }


def dumps_document(record: GameRecord) -> str:
    return json.dumps(export_document(record), ensure_ascii=False, indent=2)


def _string_list(doc: dict, key: str) -> list[str]:
    value = doc.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ImportValidationError(f"{key} must be a list")
    return [str(item) for item in value]


def _parse_nodes(raw_nodes: object) -> list[StoryNode]:
    if not isinstance(raw_nodes, list):
        raise ImportValidationError("nodes must be a list of [id, node] pairs")
    nodes: list[StoryNode] = []
    seen: set[str] = set()
    for index, entry in enumerate(raw_nodes):
        if not isinstance(entry, (list, tuple)) or len(entry) != 2 or not isinstance(entry[1], dict):
            raise ImportValidationError(f"nodes[{index}] must be an [id, node] pair")
        node_id = str(entry[0] or "").strip()
        if not node_id:
            raise ImportValidationError(f"nodes[{index}] has an empty id")
        payload = dict(entry[1])
        payload["id"] = node_id
        try:
            node = StoryNode.model_validate(payload)
        except ValidationError as exc:
            raise ImportValidationError(f"nodes[{index}] is not a valid story node: {exc}") from exc
        if node_id in seen:
            raise ImportValidationError(f"duplicate node id: {node_id}")
        seen.add(node_id)
        nodes.append(node)
    return nodes


def _resolve_pointer(nodes: list[StoryNode], current_node: object, current_page: object) -> tuple[str | None, int]:
    if not nodes:
        return None, 0
    order = [node.id for node in nodes]
    node_id = str(current_node or "")
    if node_id in order:
        return node_id, order.index(node_id)
    try:
        page = int(current_page)
    except (TypeError, ValueError):
        page = 0
    if page < 0 or page >= len(order):
        page = 0
    return order[page], page


def parse_document(raw: str | dict, *, record_id: str, updated_at: int | None = None) -> GameRecord:
    if isinstance(raw, str):
        try:
            doc = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ImportValidationError(f"document is not valid JSON: {exc}") from exc
    else:
        doc = raw
    if not isinstance(doc, dict):
        raise ImportValidationError("document must be a JSON object")
    missing = [key for key in REQUIRED_DOCUMENT_KEYS if key not in doc]
    if missing:
        raise ImportValidationError(f"document missing required keys: {', '.join(missing)}")

    nodes = _parse_nodes(doc.get("nodes"))
    current_node_id, current_page = _resolve_pointer(nodes, doc.get("currentNode"), doc.get("currentPage"))
    variables = doc.get("variables") or {}
    if not isinstance(variables, dict):
        raise ImportValidationError("variables must be an object")

    created_at = doc.get("timestamp")
    fields: dict = {
        "id": record_id,
        "name": str(doc.get("name") or record_id),
        "game_mode": str(doc.get("gameMode") or DEFAULT_GAME_MODE),
        "current_node_id": current_node_id,
        "current_page_index": current_page,
        "variables": dict(variables),
        "inventory": _string_list(doc, "inventory"),
        "history": _string_list(doc, "history"),
        "story_history": _string_list(doc, "storyHistory"),
        "nodes": nodes,
    }
    if isinstance(created_at, (int, float)):
        fields["created_at"] = int(created_at)
    if updated_at is not None:
        fields["updated_at"] = int(updated_at)
    return GameRecord(**fields)
