from __future__ import annotations

import pytest

from storyweave.modules.story.errors import AlreadyFinalizedError, DuplicateNodeError, NodeNotFoundError
from storyweave.modules.story.graph import NarrativeGraphStore
from storyweave.modules.story.models import StoryNode
from tests.support.story_stubs import make_node


def test_insert_appends_page_order_and_rejects_duplicates() -> None:
    graph = NarrativeGraphStore()
    graph.insert(make_node("start"))
    graph.insert(make_node("node_1"))

    assert graph.page_order() == ["start", "node_1"]
    assert graph.page_count() == 2
    assert graph.index_of("node_1") == 1
    with pytest.raises(DuplicateNodeError):
        graph.insert(make_node("start"))
    assert graph.page_count() == 2


def test_get_missing_node_raises_not_found() -> None:
    graph = NarrativeGraphStore()
    with pytest.raises(NodeNotFoundError) as exc:
        graph.get("nope")
    assert isinstance(exc.value, KeyError)
    assert "nope" in str(exc.value)


def test_mark_selected_choice_is_idempotent_for_same_text() -> None:
    graph = NarrativeGraphStore()
    graph.insert(make_node("start", choices=[("c1", "X"), ("c2", "Y")]))

    graph.mark_selected_choice("start", "X")
    before = graph.get("start").model_dump()
    graph.mark_selected_choice("start", "X")
    assert graph.get("start").model_dump() == before

    with pytest.raises(AlreadyFinalizedError) as exc:
        graph.mark_selected_choice("start", "Y")
    assert exc.value.existing == "X"
    assert graph.get("start").selected_choice == "X"


def test_reset_clears_nodes_and_order() -> None:
    graph = NarrativeGraphStore()
    graph.insert(make_node("start"))
    graph.reset()
    assert graph.page_count() == 0
    assert not graph.contains("start")


def test_load_and_snapshot_are_detached_copies() -> None:
    source = [make_node("start"), make_node("node_1")]
    graph = NarrativeGraphStore()
    graph.load(source)

    source[0].title = "changed outside"
    assert graph.get("start").title == "T"

    snap = graph.snapshot()
    snap[1].selected_choice = "mutated"
    assert graph.get("node_1").selected_choice is None
    assert [node.id for node in snap] == ["start", "node_1"]


def test_node_at_out_of_range_raises() -> None:
    graph = NarrativeGraphStore()
    graph.insert(make_node("start"))
    assert graph.node_at(0).id == "start"
    with pytest.raises(NodeNotFoundError):
        graph.node_at(1)


def test_story_node_rejects_duplicate_choice_ids() -> None:
    with pytest.raises(ValueError):
        StoryNode(
            id="n",
            title="t",
            content="c",
            choices=[{"id": "a", "text": "one"}, {"id": "a", "text": "two"}],
        )
