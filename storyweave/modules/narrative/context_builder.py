from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Any, Literal

from storyweave.modules.story.models import GameRecord
from storyweave.utils.time import now_ms

StoryArc = Literal["beginning", "development", "climax", "resolution"]
ConflictLevel = Literal["low", "medium", "high"]

RECENT_SHARE = 0.7
SCENE_PLACEHOLDER = "start"
MAX_KEY_EVENTS = 10

_CHOICE_PATTERN = re.compile(r"[:：]\s*(.+)$")

MODE_EMOTIONS: dict[str, str] = {
    "horror": "tense",
    "romance": "romantic",
    "mystery": "curious",
    "adventure": "excited",
    "scifi": "wonder",
    "fantasy": "magical",
}

THEME_KEYWORDS: dict[str, tuple[str, ...]] = {
    "adventure": ("探索", "发现", "未知", "旅程", "explore", "discover", "unknown", "journey"),
    "friendship": ("朋友", "伙伴", "帮助", "支持", "friend", "companion", "help", "support"),
    "growth": ("学会", "成长", "变化", "进步", "learn", "grow", "change", "progress"),
    "sacrifice": ("牺牲", "代价", "失去", "付出", "sacrifice", "price", "lose", "cost"),
    "love": ("爱", "喜欢", "心动", "浪漫", "love", "heart", "romance", "kiss"),
}

EVENT_MARKERS: tuple[str, ...] = (
    "第一次",
    "突然",
    "决定",
    "发现",
    "遇到",
    "选择",
    "first time",
    "suddenly",
    "decide",
    "discover",
    "encounter",
)


@dataclass(frozen=True)
class ContextLimits:
    max_history_items: int = 20
    max_choice_history: int = 50
    enable_compression: bool = True


@dataclass
class StoryContext:
    current_scene: str
    player_choices: list[str]
    game_mode: str
    story_history: list[str]
    player_inventory: list[str]
    game_variables: dict[str, Any]
    history_length: int = 0
    story_arc: StoryArc = "beginning"
    emotional_state: str = "neutral"
    conflict_level: ConflictLevel = "low"
    narrative_themes: list[str] = field(default_factory=list)
    key_events: list[str] = field(default_factory=list)

    @property
    def latest_choice(self) -> str:
        return self.player_choices[-1] if self.player_choices else ""


def compress_history(history: list[str], max_items: int) -> list[str]:
    """Keep the newest ~70% of the budget verbatim and sample the rest evenly from earlier entries."""
    if max_items <= 0:
        return []
    if len(history) <= max_items:
        return list(history)
    recent_count = min(max_items, math.ceil(max_items * RECENT_SHARE))
    early = history[: len(history) - recent_count]
    recent = history[len(history) - recent_count :]
    return sample_evenly(early, max_items - recent_count) + recent


def sample_evenly(items: list[str], budget: int) -> list[str]:
    if budget <= 0:
        return []
    if len(items) <= budget:
        return list(items)
    stride = math.ceil(len(items) / budget)
    return items[::stride][:budget]


def extract_choices(story_history: list[str]) -> list[str]:
    choices: list[str] = []
    for entry in story_history:
        match = _CHOICE_PATTERN.search(str(entry))
        if match and match.group(1).strip():
            choices.append(match.group(1).strip())
    return choices


def story_arc_for(length: int) -> StoryArc:
    if length < 5:
        return "beginning"
    if length < 15:
        return "development"
    if length < 25:
        return "climax"
    return "resolution"


def conflict_level_for(length: int) -> ConflictLevel:
    if length < 5:
        return "low"
    if length < 15:
        return "medium"
    return "high"


def emotional_state_for(game_mode: str, variables: dict[str, Any]) -> str:
    mood = variables.get("mood") or variables.get("atmosphere")
    if isinstance(mood, str) and mood.strip():
        return mood.strip()
    return MODE_EMOTIONS.get(game_mode, "neutral")


def narrative_themes_for(story_history: list[str]) -> list[str]:
    if not story_history:
        return []
    content = " ".join(story_history).lower()
    return [theme for theme, keywords in THEME_KEYWORDS.items() if any(word in content for word in keywords)]


def key_events_for(story_history: list[str]) -> list[str]:
    events = [entry for entry in story_history if any(marker in entry.lower() for marker in EVENT_MARKERS)]
    return events[-MAX_KEY_EVENTS:]


class ContextBuilder:
    def __init__(self, limits: ContextLimits | None = None):
        self.limits = limits or ContextLimits()

    def build(self, record: GameRecord, pending_choice: str | None = None) -> StoryContext:
        raw_history = [str(item) for item in record.story_history]
        story_history = self._process_history(raw_history)
        variables = self._enhance_variables(record)
        length = len(raw_history)
        return StoryContext(
            current_scene=self._current_scene(record),
            player_choices=self._choice_history(raw_history, pending_choice),
            game_mode=record.game_mode,
            story_history=story_history,
            player_inventory=list(record.inventory),
            game_variables=variables,
            history_length=length,
            story_arc=story_arc_for(length),
            emotional_state=emotional_state_for(record.game_mode, record.variables),
            conflict_level=conflict_level_for(length),
            narrative_themes=narrative_themes_for(raw_history),
            key_events=key_events_for(raw_history),
        )

    def _process_history(self, history: list[str]) -> list[str]:
        if self.limits.enable_compression and len(history) > self.limits.max_history_items:
            return compress_history(history, self.limits.max_history_items)
        return list(history)

    def _choice_history(self, history: list[str], pending_choice: str | None) -> list[str]:
        choices = extract_choices(history)
        if pending_choice and pending_choice.strip():
            choices.append(pending_choice.strip())
        return choices[-self.limits.max_choice_history :]

    @staticmethod
    def _current_scene(record: GameRecord) -> str:
        for node in record.nodes:
            if node.id == record.current_node_id:
                return node.title or node.id
        return SCENE_PLACEHOLDER

    @staticmethod
    def _enhance_variables(record: GameRecord) -> dict[str, Any]:
        enhanced = dict(record.variables)
        started = record.created_at or now_ms()
        updated = record.updated_at or started
        enhanced["_stats"] = {
            "totalChoices": len(record.history),
            "gameStartTime": started,
            "gameUpdateTime": updated,
            "visitedNodes": len(record.history),
            "gameSessionDuration": max(0, updated - started),
        }
        enhanced["_session"] = {
            "gameId": record.id,
            "gameName": record.name,
            "currentPage": record.current_page_index + 1 if record.current_node_id is not None else 0,
            "totalPages": record.total_pages,
        }
        return enhanced
