from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from storyweave.modules.story.models import DEFAULT_GAME_MODE, GameRecord, StoryNode


class ChoiceOut(BaseModel):
    id: str
    text: str
    consequence: str | None = None


class StoryNodeOut(BaseModel):
    id: str
    title: str
    content: str
    choices: list[ChoiceOut]
    effects: dict[str, Any] | None = None
    selected_choice: str | None = None
    created_at: int

    @classmethod
    def from_node(cls, node: StoryNode) -> "StoryNodeOut":
        return cls(
            id=node.id,
            title=node.title,
            content=node.content,
            choices=[ChoiceOut(id=c.id, text=c.text, consequence=c.consequence) for c in node.choices],
            effects=node.effects,
            selected_choice=node.selected_choice,
            created_at=node.created_at,
        )


class SessionSummaryOut(BaseModel):
    id: str
    name: str
    game_mode: str
    total_pages: int
    current_node_id: str | None = None
    created_at: int
    updated_at: int

    @classmethod
    def from_record(cls, record: GameRecord) -> "SessionSummaryOut":
        return cls(
            id=record.id,
            name=record.name,
            game_mode=record.game_mode,
            total_pages=record.total_pages,
            current_node_id=record.current_node_id,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class SessionStateOut(SessionSummaryOut):
    current_page: int = 0
    can_go_previous: bool = False
    can_go_next: bool = False
    generating: bool = False
    variables: dict[str, Any] = Field(default_factory=dict)
    inventory: list[str] = Field(default_factory=list)
    history: list[str] = Field(default_factory=list)
    story_history: list[str] = Field(default_factory=list)
    current_node: StoryNodeOut | None = None


class SessionCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    game_mode: str = Field(default=DEFAULT_GAME_MODE, min_length=1)
    name: str | None = None


class ChoiceRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    choice_id: str | None = None
    custom_text: str | None = None


class NavigateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    direction: Literal["prev", "next", "goto"]
    page: int | None = None


class NavigateOut(BaseModel):
    moved: bool
    state: SessionStateOut


class ImportRequest(BaseModel):
    document: dict[str, Any] | str
