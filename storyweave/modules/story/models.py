from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from storyweave.utils.time import now_ms

DEFAULT_GAME_MODE = "adventure"
START_NODE_ID = "start"


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Choice(_CamelModel):
    id: str = Field(min_length=1)
    text: str = Field(min_length=1)
    consequence: str | None = None


class StoryNode(_CamelModel):
    id: str = Field(min_length=1)
    title: str
    content: str
    choices: list[Choice] = Field(default_factory=list)
    effects: dict[str, Any] | None = None
    is_generated: bool = True
    created_at: int = Field(default_factory=now_ms, alias="timestamp")
    selected_choice: str | None = None

    @field_validator("choices")
    @classmethod
    def unique_choice_ids(cls, value: list[Choice]) -> list[Choice]:
        seen: set[str] = set()
        for choice in value:
            if choice.id in seen:
                raise ValueError(f"duplicate choice id: {choice.id}")
            seen.add(choice.id)
        return value

    def find_choice(self, choice_id: str) -> Choice | None:
        for choice in self.choices:
            if choice.id == choice_id:
                return choice
        return None


class GameRecord(_CamelModel):
    """One playthrough. ``nodes`` is the node table in page order."""

    id: str
    name: str
    game_mode: str = DEFAULT_GAME_MODE
    created_at: int = Field(default_factory=now_ms)
    updated_at: int = Field(default_factory=now_ms)
    current_node_id: str | None = None
    current_page_index: int = 0
    variables: dict[str, Any] = Field(default_factory=dict)
    inventory: list[str] = Field(default_factory=list)
    history: list[str] = Field(default_factory=list)
    story_history: list[str] = Field(default_factory=list)
    nodes: list[StoryNode] = Field(default_factory=list)

    @property
    def total_pages(self) -> int:
        return len(self.nodes)

    @property
    def page_order(self) -> list[str]:
        return [node.id for node in self.nodes]


class SessionCollection(BaseModel):
    records: dict[str, GameRecord] = Field(default_factory=dict)
    active_id: str | None = None

    def active(self) -> GameRecord | None:
        if self.active_id is None:
            return None
        return self.records.get(self.active_id)

    def add(self, record: GameRecord, *, activate: bool = False) -> None:
        self.records[record.id] = record
        if activate:
            self.active_id = record.id

    def remove(self, record_id: str) -> GameRecord | None:
        removed = self.records.pop(record_id, None)
        if removed is not None and self.active_id == record_id:
            self.active_id = None
        return removed

    def sorted_records(self) -> list[GameRecord]:
        return sorted(self.records.values(), key=lambda item: item.updated_at, reverse=True)
