from __future__ import annotations

from storyweave.modules.narrative.context_builder import (
    ContextBuilder,
    ContextLimits,
    compress_history,
    extract_choices,
    sample_evenly,
)
from storyweave.modules.story.models import GameRecord
from tests.support.story_stubs import make_record


def _record_with_history(count: int) -> GameRecord:
    return GameRecord(
        id="game_1",
        name="n",
        game_mode="adventure",
        created_at=1_000,
        updated_at=5_000,
        story_history=[f"Scene {index}: choice {index}" for index in range(count)],
        history=[f"node_{index}" for index in range(count)],
    )


def test_compression_keeps_budget_and_recent_tail() -> None:
    record = _record_with_history(1000)
    context = ContextBuilder(ContextLimits(max_history_items=20)).build(record)

    assert len(context.story_history) == 20
    assert context.story_history[-14:] == record.story_history[-14:]
    early = context.story_history[:6]
    positions = [record.story_history.index(entry) for entry in early]
    assert positions == sorted(positions)
    assert positions[0] == 0
    assert all(position < 1000 - 14 for position in positions)


def test_history_under_budget_is_untouched() -> None:
    record = _record_with_history(5)
    context = ContextBuilder().build(record)
    assert context.story_history == record.story_history


def test_compression_can_be_disabled() -> None:
    record = _record_with_history(40)
    context = ContextBuilder(ContextLimits(max_history_items=20, enable_compression=False)).build(record)
    assert len(context.story_history) == 40


def test_sample_evenly_uses_ceil_stride() -> None:
    items = [str(index) for index in range(10)]
    assert sample_evenly(items, 3) == ["0", "4", "8"]
    assert sample_evenly(items, 0) == []
    assert sample_evenly(items[:2], 5) == ["0", "1"]


def test_compress_history_budget_of_one_keeps_last_entry() -> None:
    assert compress_history(["a", "b", "c"], 1) == ["c"]


def test_empty_history_yields_starting_context() -> None:
    record = GameRecord(id="game_1", name="n", game_mode="horror")
    context = ContextBuilder().build(record)

    assert context.current_scene == "start"
    assert context.story_history == []
    assert context.player_choices == []
    assert context.story_arc == "beginning"
    assert context.conflict_level == "low"
    assert context.emotional_state == "tense"
    assert context.narrative_themes == []
    assert context.key_events == []


def test_pending_choice_is_appended_and_choice_window_bounded() -> None:
    record = _record_with_history(60)
    context = ContextBuilder(ContextLimits(max_choice_history=50)).build(record, pending_choice="open the door")

    assert len(context.player_choices) == 50
    assert context.player_choices[-1] == "open the door"
    assert context.latest_choice == "open the door"
    assert context.player_choices[-2] == "choice 59"


def test_extract_choices_handles_full_width_colon() -> None:
    assert extract_choices(["洞穴：点燃火把", "Gate: knock", "no separator"]) == ["点燃火把", "knock"]


def test_metadata_follows_history_length_and_mood() -> None:
    record = _record_with_history(16)
    record.variables["mood"] = "grim"
    context = ContextBuilder().build(record)

    assert context.story_arc == "climax"
    assert context.conflict_level == "high"
    assert context.emotional_state == "grim"


def test_themes_and_key_events_from_keywords() -> None:
    record = GameRecord(
        id="game_1",
        name="n",
        story_history=["Cave: explore the tunnel", "Bridge: suddenly the rope snaps", "Camp: help a friend"],
    )
    context = ContextBuilder().build(record)

    assert "adventure" in context.narrative_themes
    assert "friendship" in context.narrative_themes
    assert context.key_events == ["Bridge: suddenly the rope snaps"]


def test_variables_carry_stats_and_session_info() -> None:
    record = make_record(pages=3)
    context = ContextBuilder().build(record)

    stats = context.game_variables["_stats"]
    assert stats["totalChoices"] == 2
    assert stats["gameSessionDuration"] == record.updated_at - record.created_at
    assert context.game_variables["_session"]["totalPages"] == 3
    assert context.game_variables["_session"]["currentPage"] == 3
    assert context.game_variables["hp"] == 3
    assert "_stats" not in record.variables
    assert context.current_scene == "Page 3"
