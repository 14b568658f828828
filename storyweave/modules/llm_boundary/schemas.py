from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from storyweave.modules.story.models import Choice

RECOGNIZED_EFFECT_KEYS = ("add_item", "remove_item", "set_variable", "mood", "location")


class StoryNodeDraft(BaseModel):
    """A validated model result that has not been committed to any session."""

    model_config = ConfigDict(extra="ignore")

    title: str = Field(min_length=1)
    content: str = Field(min_length=1)
    choices: list[Choice] = Field(min_length=1)
    effects: dict[str, Any] | None = None


STORY_NODE_SCHEMA = {
    "type": "object",
    "required": ["title", "content", "choices"],
    "properties": {
        "title": {"type": "string", "minLength": 1},
        "content": {"type": "string", "minLength": 1},
        "choices": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": ["object", "string"],
                "properties": {
                    "id": {"type": ["string", "integer", "null"]},
                    "text": {"type": ["string", "null"]},
                    "consequence": {"type": ["string", "null"]},
                },
            },
        },
        "effects": {"type": ["object", "null"]},
    },
}
