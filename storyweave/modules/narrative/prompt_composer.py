from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Literal

from storyweave.config import CustomGameMode
from storyweave.modules.llm_boundary.schemas import RECOGNIZED_EFFECT_KEYS
from storyweave.modules.narrative.context_builder import StoryContext

GenerationKind = Literal["initial", "continuation"]

SYSTEM_PROMPT = (
    "You are a professional interactive fiction author who writes gripping branching stories. "
    "Return exactly one JSON object and nothing else."
)

LANGUAGE_NAMES = {"zh": "Simplified Chinese", "en": "English"}
LENGTH_FACTORS = {"short": 0.6, "medium": 1.0, "long": 1.4}
LONG_HISTORY_THRESHOLD = 10


@dataclass(frozen=True)
class PromptStrategy:
    game_mode: str
    display_name: str
    creativity: float
    verbosity: int
    focus: tuple[str, ...]
    guidance: str


@dataclass(frozen=True)
class ContextModifier:
    name: str
    condition: Callable[[StoryContext], bool]
    text: str
    priority: int


@dataclass(frozen=True)
class ComposedPrompt:
    text: str
    temperature: float
    max_tokens: int
    system_prompt: str = SYSTEM_PROMPT


@dataclass(frozen=True)
class PromptOptions:
    language: str = "zh"
    max_choices: int = 4
    story_length: str = "medium"
    custom_game_modes: dict[str, CustomGameMode] = field(default_factory=dict)


CRAFT_REQUIREMENTS = """Craft requirements:
1. Show, don't tell: reveal plot and feeling through action, dialogue and concrete detail.
   Do not write "he was afraid"; write "his hands trembled and cold sweat beaded on his brow".
2. Multi-sensory detail: use sight, sound, touch, smell and taste so the setting is part of the story.
3. Pacing: short sentences for tension and speed, longer ones for description and emotional build-up.
4. Emotional depth: show inner conflict and motive through small gestures; avoid flat stock characters.
5. Escalating conflict: every scene carries inner or outer tension and choices lead to meaningful consequences.
6. Controlled reveal: withhold key information, foreshadow without fully revealing what comes next."""

STRATEGIES: dict[str, PromptStrategy] = {
    "adventure": PromptStrategy(
        game_mode="adventure",
        display_name="adventure & exploration",
        creativity=0.8,
        verbosity=1000,
        focus=("exploration", "discovery", "challenge", "growth"),
        guidance=(
            "Adventure writing guidance:\n"
            "- Build an atmosphere of mystery and the unknown that invites exploration\n"
            "- Describe places vividly so the world feels solid\n"
            "- Set clear goals and challenges that reward the player\n"
            "- Balance danger and opportunity\n"
            "- Emphasise the joy of discovery and the path of growth"
        ),
    ),
    "mystery": PromptStrategy(
        game_mode="mystery",
        display_name="mystery & deduction",
        creativity=0.7,
        verbosity=1200,
        focus=("clues", "deduction", "suspense", "revelation"),
        guidance=(
            "Mystery writing guidance:\n"
            "- Plant puzzles and clues with rigorous logic\n"
            "- Keep information asymmetric so the reader deduces alongside the protagonist\n"
            "- Use red herrings to raise the difficulty\n"
            "- Pace revelations to sustain suspense\n"
            "- Give characters complex but believable motives"
        ),
    ),
    "horror": PromptStrategy(
        game_mode="horror",
        display_name="horror & thriller",
        creativity=0.85,
        verbosity=1100,
        focus=("atmosphere", "fear", "tension", "unknown"),
        guidance=(
            "Horror writing guidance:\n"
            "- Suggest rather than show so fear comes from imagination\n"
            "- Build an oppressive, uneasy atmosphere that accumulates dread\n"
            "- Favour psychological fear over gore\n"
            "- Use setting and sound to unsettle\n"
            "- Break calm moments with sudden turns"
        ),
    ),
    "romance": PromptStrategy(
        game_mode="romance",
        display_name="romance",
        creativity=0.75,
        verbosity=1150,
        focus=("emotion", "relationship", "chemistry", "conflict"),
        guidance=(
            "Romance writing guidance:\n"
            "- Focus on chemistry and emotional tension between characters\n"
            "- Portray shifts in feeling and inner life with nuance\n"
            "- Introduce believable emotional obstacles\n"
            "- Balance tender moments with dramatic conflict\n"
            "- Reveal personality and relationship growth through dialogue"
        ),
    ),
    "scifi": PromptStrategy(
        game_mode="scifi",
        display_name="science fiction",
        creativity=0.85,
        verbosity=1200,
        focus=("technology", "future", "humanity", "exploration"),
        guidance=(
            "Science fiction writing guidance:\n"
            "- Build a detailed and credible technological setting\n"
            "- Explore how technology shapes people and society\n"
            "- Keep the internal logic consistent\n"
            "- Balance technical description with the human story\n"
            "- Create a distinctive vision of the future"
        ),
    ),
    "fantasy": PromptStrategy(
        game_mode="fantasy",
        display_name="fantasy & magic",
        creativity=0.9,
        verbosity=1250,
        focus=("magic", "adventure", "mythology", "heroism"),
        guidance=(
            "Fantasy writing guidance:\n"
            "- Establish a complete magic system and rules for the world\n"
            "- Create distinctive peoples, cultures and history\n"
            "- Balance the fantastical with character growth\n"
            "- Keep magic internally consistent\n"
            "- Evoke an epic sense of adventure"
        ),
    ),
}
FALLBACK_MODE = "adventure"

MODIFIERS: tuple[ContextModifier, ...] = (
    ContextModifier(
        name="long_history",
        condition=lambda ctx: ctx.history_length > LONG_HISTORY_THRESHOLD,
        text=(
            "Long-story requirements:\n"
            "- Respect established continuity and keep characters consistent\n"
            "- Pay off foreshadowing planted earlier\n"
            "- Tighten the pacing"
        ),
        priority=1,
    ),
    ContextModifier(
        name="high_conflict",
        condition=lambda ctx: ctx.conflict_level == "high",
        text=(
            "High-conflict scene requirements:\n"
            "- Intensify tension and drama\n"
            "- Shorten sentences\n"
            "- Stress time pressure"
        ),
        priority=2,
    ),
)

_INITIAL_SCHEMA = """{
  "title": "scene title",
  "content": "the scene itself, rich in sensory and emotional detail",
  "choices": [
    {"id": "choice1", "text": "what the player does", "consequence": "a hint of what may follow"}
  ]
}"""

_CONTINUATION_SCHEMA = """{
  "title": "scene title",
  "content": "the scene itself",
  "choices": [
    {"id": "choice1", "text": "what the player does", "consequence": "a hint of what may follow"}
  ],
  "effects": {
    "add_item": ["item gained"],
    "remove_item": ["item lost"],
    "set_variable": {"name": "value"},
    "mood": "new mood",
    "location": "new location"
  }
}"""


def _json(value: object) -> str:
    return json.dumps(value, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


class PromptComposer:
    """Turns a story context into one model-ready instruction. ``compose`` is deterministic."""

    def __init__(self, options: PromptOptions | None = None):
        self.options = options or PromptOptions()

    def strategy_for(self, game_mode: str) -> PromptStrategy:
        return STRATEGIES.get(game_mode) or STRATEGIES[FALLBACK_MODE]

    def recommended_parameters(self, game_mode: str) -> tuple[float, int]:
        strategy = self.strategy_for(game_mode)
        factor = LENGTH_FACTORS.get(self.options.story_length, 1.0)
        return strategy.creativity, int(round(strategy.verbosity * factor))

    def mode_guidance(self, game_mode: str) -> str:
        if game_mode in STRATEGIES:
            return STRATEGIES[game_mode].guidance
        custom = self.options.custom_game_modes.get(game_mode)
        if custom is not None and custom.prompt.strip():
            return f"Custom mode guidance:\n{custom.prompt.strip()}"
        return STRATEGIES[FALLBACK_MODE].guidance

    def mode_display_name(self, game_mode: str) -> str:
        if game_mode in STRATEGIES:
            return STRATEGIES[game_mode].display_name
        custom = self.options.custom_game_modes.get(game_mode)
        if custom is not None:
            return custom.name.strip() or "Custom mode"
        return STRATEGIES[FALLBACK_MODE].display_name

    def compose(self, context: StoryContext, game_mode: str, kind: GenerationKind) -> ComposedPrompt:
        temperature, max_tokens = self.recommended_parameters(game_mode)
        if kind == "initial":
            sections = self._initial_sections(context, game_mode, word_count=max_tokens)
        else:
            sections = self._continuation_sections(context, game_mode, word_count=max_tokens)
            sections.extend(self._modifier_blocks(context))
        sections.append(self._quality_block(game_mode))
        sections.append(self._output_block(kind))
        text = "\n\n".join(section.strip() for section in sections if section and section.strip())
        return ComposedPrompt(text=text, temperature=temperature, max_tokens=max_tokens)

    def _language_line(self) -> str:
        language = LANGUAGE_NAMES.get(self.options.language, LANGUAGE_NAMES["en"])
        return f"Write every field in {language}."

    def _initial_sections(self, context: StoryContext, game_mode: str, *, word_count: int) -> list[str]:
        choice_count = self.options.max_choices
        sections = [
            "You are a seasoned interactive fiction author fluent in every genre. "
            f"Write a compelling opening for a {self.mode_display_name(game_mode)} story.",
            CRAFT_REQUIREMENTS,
            self.mode_guidance(game_mode),
            "Writing requirements:\n"
            f"- About {word_count} words\n"
            "- Open on a scene that hooks the reader\n"
            "- Introduce the main character or situation\n"
            "- Set up the first conflict or puzzle\n"
            f"- Offer {choice_count} meaningful choices that steer the plot differently\n"
            "- Give every choice a distinct hint of its consequence\n"
            f"- {self._language_line()}",
        ]
        starting_state = self._starting_state_block(context)
        if starting_state:
            sections.insert(3, starting_state)
        return sections

    @staticmethod
    def _starting_state_block(context: StoryContext) -> str:
        """Player state that exists before the first scene, e.g. carried over from an import."""
        variables = {key: value for key, value in context.game_variables.items() if not key.startswith("_")}
        lines: list[str] = []
        if context.player_inventory:
            lines.append(f"Inventory: {', '.join(context.player_inventory)}")
        if variables:
            lines.append(f"Game variables: {_json(variables)}")
        if not lines:
            return ""
        return "\n".join(["The player starts with:", *lines])

    def _continuation_sections(self, context: StoryContext, game_mode: str, *, word_count: int) -> list[str]:
        choice_count = self.options.max_choices
        sections = [
            "You are a seasoned interactive fiction author continuing a "
            f"{self.mode_display_name(game_mode)} interactive story.",
            CRAFT_REQUIREMENTS,
            self.mode_guidance(game_mode),
            self._context_block(context),
            "Writing requirements:\n"
            "- Continue naturally from the player's choice\n"
            "- Stay consistent with everything that came before\n"
            "- Deepen characters and their relationships\n"
            "- Advance the main plot threads\n"
            f"- Offer {choice_count} choices with real depth\n"
            f"- About {word_count} words\n"
            f"- {self._language_line()}",
        ]
        specific = self._context_specific_requirements(context)
        if specific:
            sections.append("Pay special attention to:\n" + specific)
        return sections

    def _context_block(self, context: StoryContext) -> str:
        if context.story_history:
            history = "\n".join(f"{index}. {entry}" for index, entry in enumerate(context.story_history, start=1))
        else:
            history = "The story has just begun."
        lines = [
            "Story so far:",
            f"Current scene: {context.current_scene}",
            f"Player's choice: {context.latest_choice or 'none'}",
            f"Earlier choices: {', '.join(context.player_choices[:-1]) or 'none'}",
            f"History:\n{history}",
            f"Inventory: {', '.join(context.player_inventory) or 'empty'}",
            f"Game variables: {_json(context.game_variables)}",
            f"Story arc: {context.story_arc}; conflict level: {context.conflict_level}; "
            f"emotional tone: {context.emotional_state}",
        ]
        if context.key_events:
            lines.append("Key events: " + " | ".join(context.key_events))
        return "\n".join(lines)

    @staticmethod
    def _context_specific_requirements(context: StoryContext) -> str:
        requirements: list[str] = []
        if context.story_arc == "climax":
            requirements.append("- This is the climax; raise the dramatic stakes")
        if context.emotional_state:
            requirements.append(f"- Current emotional tone: {context.emotional_state}")
        if context.conflict_level == "high":
            requirements.append("- Sustain high tension and conflict")
        if context.narrative_themes:
            requirements.append(f"- Emphasise themes: {', '.join(context.narrative_themes)}")
        return "\n".join(requirements)

    @staticmethod
    def _modifier_blocks(context: StoryContext) -> list[str]:
        applicable = [modifier for modifier in MODIFIERS if modifier.condition(context)]
        applicable.sort(key=lambda modifier: modifier.priority, reverse=True)
        return [modifier.text for modifier in applicable]

    def _quality_block(self, game_mode: str) -> str:
        return (
            "Quality bar:\n"
            f"1. Content fits the character and atmosphere of {self.mode_display_name(game_mode)}\n"
            "2. The narrative is coherent and logical\n"
            "3. Characters act according to established traits\n"
            "4. Choices differ in substance and consequence\n"
            "5. Avoid cliches and overused plots\n"
            "6. Keep suspense and pull"
        )

    @staticmethod
    def _output_block(kind: GenerationKind) -> str:
        schema = _INITIAL_SCHEMA if kind == "initial" else _CONTINUATION_SCHEMA
        extra = (
            ""
            if kind == "initial"
            else f"\n`effects` is optional; recognised keys are {', '.join(RECOGNIZED_EFFECT_KEYS)}."
        )
        return (
            "Output format:\n"
            "Return a single strict JSON object with the fields below. "
            "`title`, `content` and a non-empty `choices` list are required; "
            "every choice needs a unique `id` and a `text`."
            f"{extra}\n{schema}"
        )

    @staticmethod
    def analyze_quality(prompt: str) -> tuple[float, list[str]]:
        text = prompt.lower()
        score = 0.5
        if "show, don't tell" in text:
            score += 0.1
        if "multi-sensory" in text:
            score += 0.1
        if "pacing" in text:
            score += 0.05
        if "json" in text:
            score += 0.1
        if "choices" in text:
            score += 0.1
        if "current scene" in text:
            score += 0.05

        suggestions: list[str] = []
        if score < 0.7:
            if "show, don't tell" not in text:
                suggestions.append("add show-don't-tell craft guidance")
            if "multi-sensory" not in text:
                suggestions.append("ask for multi-sensory description")
            if "json" not in text:
                suggestions.append("require JSON output explicitly")
        return min(score, 1.0), suggestions
