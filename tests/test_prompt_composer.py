from __future__ import annotations

from storyweave.config import CustomGameMode
from storyweave.modules.narrative.context_builder import ContextBuilder
from storyweave.modules.narrative.prompt_composer import (
    CRAFT_REQUIREMENTS,
    STRATEGIES,
    PromptComposer,
    PromptOptions,
)
from storyweave.modules.story.models import GameRecord
from tests.support.story_stubs import make_record


def _context(history_count: int = 0, game_mode: str = "adventure"):
    record = GameRecord(
        id="game_1",
        name="n",
        game_mode=game_mode,
        created_at=1,
        updated_at=2,
        story_history=[f"Scene {index}: step {index}" for index in range(history_count)],
    )
    return ContextBuilder().build(record, pending_choice="light the torch")


def test_compose_is_deterministic() -> None:
    composer = PromptComposer(PromptOptions(language="en"))
    context = _context(history_count=3)
    first = composer.compose(context, "mystery", "continuation")
    second = composer.compose(_context(history_count=3), "mystery", "continuation")
    assert first == second


def test_strategy_drives_sampling_parameters() -> None:
    composer = PromptComposer()
    prompt = composer.compose(_context(), "fantasy", "initial")
    assert prompt.temperature == STRATEGIES["fantasy"].creativity
    assert prompt.max_tokens == STRATEGIES["fantasy"].verbosity


def test_story_length_scales_token_budget() -> None:
    short = PromptComposer(PromptOptions(story_length="short")).compose(_context(), "adventure", "initial")
    long = PromptComposer(PromptOptions(story_length="long")).compose(_context(), "adventure", "initial")
    assert short.max_tokens == 600
    assert long.max_tokens == 1400


def test_initial_prompt_sections_and_schema() -> None:
    composer = PromptComposer(PromptOptions(language="zh", max_choices=3))
    text = composer.compose(_context(), "horror", "initial").text

    assert CRAFT_REQUIREMENTS in text
    assert STRATEGIES["horror"].guidance in text
    assert "Offer 3 meaningful choices" in text
    assert "Simplified Chinese" in text
    assert '"title"' in text and '"choices"' in text
    assert "effects" not in text


def test_continuation_prompt_carries_context_and_effects_keys() -> None:
    composer = PromptComposer(PromptOptions(language="en"))
    text = composer.compose(_context(history_count=2), "adventure", "continuation").text

    assert "Player's choice: light the torch" in text
    assert "1. Scene 0: step 0" in text
    assert "add_item, remove_item, set_variable, mood, location" in text
    assert "Write every field in English." in text


def test_modifiers_apply_in_priority_order_when_predicates_hold() -> None:
    composer = PromptComposer()
    quiet = composer.compose(_context(history_count=3), "adventure", "continuation").text
    assert "High-conflict scene requirements" not in quiet
    assert "Long-story requirements" not in quiet

    busy = composer.compose(_context(history_count=20), "adventure", "continuation").text
    high = busy.index("High-conflict scene requirements")
    long = busy.index("Long-story requirements")
    assert high < long


def test_unknown_mode_falls_back_to_adventure_guidance() -> None:
    composer = PromptComposer()
    prompt = composer.compose(_context(game_mode="cozy"), "cozy", "initial")
    assert STRATEGIES["adventure"].guidance in prompt.text
    assert prompt.temperature == STRATEGIES["adventure"].creativity


def test_custom_mode_uses_author_prompt_and_name() -> None:
    composer = PromptComposer(
        PromptOptions(custom_game_modes={"noir": CustomGameMode(name="Noir", prompt="Rain, smoke and betrayal.")})
    )
    text = composer.compose(_context(game_mode="noir"), "noir", "initial").text
    assert "Rain, smoke and betrayal." in text
    assert STRATEGIES["adventure"].guidance not in text
    assert composer.mode_display_name("noir") == "Noir"
    assert composer.mode_display_name("adventure") == STRATEGIES["adventure"].display_name


def test_analyze_quality_scores_composed_prompt_higher_than_bare_text() -> None:
    composer = PromptComposer()
    context = ContextBuilder().build(make_record(), pending_choice="go on")
    good_score, good_suggestions = PromptComposer.analyze_quality(composer.compose(context, "adventure", "continuation").text)
    bad_score, bad_suggestions = PromptComposer.analyze_quality("write something")

    assert good_score > bad_score
    assert good_suggestions == []
    assert "require JSON output explicitly" in bad_suggestions
    assert 0.0 <= bad_score <= 1.0


def test_initial_prompt_lists_starting_inventory_and_variables() -> None:
    composer = PromptComposer(PromptOptions(language="en"))
    assert "The player starts with:" not in composer.compose(_context(), "adventure", "initial").text

    record = GameRecord(
        id="game_1",
        name="n",
        game_mode="adventure",
        created_at=1,
        updated_at=2,
        inventory=["rope"],
        variables={"hp": 3},
    )
    text = composer.compose(ContextBuilder().build(record), "adventure", "initial").text
    assert "The player starts with:\nInventory: rope\nGame variables: {\"hp\":3}" in text
    assert "_stats" not in text
