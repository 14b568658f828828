from __future__ import annotations

from typing import Any

from storyweave.modules.story.models import GameRecord

VARIABLE_KEY_PREFIX = "var_"


def _as_items(value: Any) -> list[str]:
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return [str(item) for item in value if item is not None and str(item).strip()]
    return [str(value)]


def apply_effects(effects: dict[str, Any] | None, record: GameRecord) -> None:
    """Apply node side effects to a record's variables and inventory in place.

    Unknown keys are ignored; ``remove_item`` drops the first occurrence of each item.
    """
    if not effects:
        return
    for key, value in effects.items():
        if key == "set_variable":
            if isinstance(value, dict):
                record.variables.update(value)
        elif key.startswith(VARIABLE_KEY_PREFIX) and len(key) > len(VARIABLE_KEY_PREFIX):
            record.variables[key[len(VARIABLE_KEY_PREFIX) :]] = value
        elif key == "add_item":
            record.inventory.extend(_as_items(value))
        elif key == "remove_item":
            for item in _as_items(value):
                if item in record.inventory:
                    record.inventory.remove(item)
        elif key in {"mood", "location"}:
            if value is not None and value != "":
                record.variables[key] = value
