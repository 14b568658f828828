from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Literal, Protocol

from storyweave.config import Settings
from storyweave.modules.llm_boundary.schemas import StoryNodeDraft
from storyweave.modules.narrative.context_builder import ContextBuilder, ContextLimits
from storyweave.modules.narrative.prompt_composer import ComposedPrompt, PromptComposer, PromptOptions
from storyweave.modules.persistence.base import PersistenceGateway
from storyweave.modules.session.effects import apply_effects
from storyweave.modules.session.errors import (
    ChoiceNotFoundError,
    NoActiveSessionError,
    SessionBusyError,
    SessionNotFoundError,
)
from storyweave.modules.story.codec import dumps_document, parse_document
from storyweave.modules.story.errors import AlreadyFinalizedError
from storyweave.modules.story.graph import NarrativeGraphStore
from storyweave.modules.story.models import (
    DEFAULT_GAME_MODE,
    START_NODE_ID,
    Choice,
    GameRecord,
    SessionCollection,
    StoryNode,
)
from storyweave.utils.time import IdFactory, next_update_ms, now_ms

log = logging.getLogger("storyweave")

Direction = Literal["prev", "next", "goto"]
TokenSink = Callable[[str], None]

SESSION_ID_PREFIX = "game"
IMPORTED_SESSION_ID_PREFIX = "imported_game"
NODE_ID_PREFIX = "node"
CUSTOM_CHOICE_PREFIX = "custom"


class StoryGenerator(Protocol):
    def generate(
        self,
        prompt: ComposedPrompt,
        *,
        stream: bool = False,
        on_token: TokenSink | None = None,
    ) -> StoryNodeDraft: ...


def _default_generator(config: Settings) -> StoryGenerator:
    from storyweave.modules.llm_boundary.service import GenerationClient, LLMChannelConfig

    return GenerationClient(LLMChannelConfig.from_settings(config))


class SessionEngine:
    """Owns the player's sessions and the graph of the active one.

    One writer at a time: ``start_session``, ``make_choice`` and every other
    mutating call raise ``SessionBusyError`` while a turn is outstanding.
    Generation failures propagate and leave the session exactly as it was.
    """

    def __init__(
        self,
        config: Settings,
        gateway: PersistenceGateway,
        *,
        generator: StoryGenerator | None = None,
        context_builder: ContextBuilder | None = None,
        composer: PromptComposer | None = None,
        ids: IdFactory | None = None,
    ):
        self.config = config
        self.gateway = gateway
        self.generator = generator or _default_generator(config)
        self.context_builder = context_builder or ContextBuilder(
            ContextLimits(
                max_history_items=config.context_max_history_items,
                max_choice_history=config.context_max_choice_history,
                enable_compression=config.context_enable_compression,
            )
        )
        self.composer = composer or PromptComposer(
            PromptOptions(
                language=config.story_language,
                max_choices=config.story_max_choices,
                story_length=config.story_length,
                custom_game_modes=dict(config.custom_game_modes),
            )
        )
        self.ids = ids or IdFactory()
        self.sessions = SessionCollection()
        self.graph = NarrativeGraphStore()
        self._lock = threading.Lock()
        self._busy = False

    @property
    def generating(self) -> bool:
        return self._busy

    @contextmanager
    def _claim(self) -> Iterator[None]:
        with self._lock:
            if self._busy:
                raise SessionBusyError("a story turn is already in progress")
            self._busy = True
        try:
            yield
        finally:
            with self._lock:
                self._busy = False

    # -- read models -------------------------------------------------------

    def active_session(self) -> GameRecord | None:
        return self.sessions.active()

    def current_node(self) -> StoryNode | None:
        record = self.sessions.active()
        if record is None or record.current_node_id is None:
            return None
        if not self.graph.contains(record.current_node_id):
            return None
        return self.graph.get(record.current_node_id)

    def current_page(self) -> int:
        record = self.sessions.active()
        if record is None or record.current_node_id is None:
            return 0
        return record.current_page_index + 1

    def total_pages(self) -> int:
        return self.graph.page_count() if self.sessions.active() is not None else 0

    def can_go_previous(self) -> bool:
        return self.current_page() > 1

    def can_go_next(self) -> bool:
        return 0 < self.current_page() < self.total_pages()

    def list_sessions(self) -> list[GameRecord]:
        return self.sessions.sorted_records()

    # -- lifecycle ---------------------------------------------------------

    def load_state(self) -> GameRecord | None:
        """Replace in-memory sessions with whatever the gateway holds and resume the active one."""
        with self._claim():
            collection = self.gateway.load_all()
            active = collection.active()
            if active is None and collection.records:
                active = collection.sorted_records()[0]
            self.sessions = SessionCollection(records=collection.records)
            self.graph.reset()
            if active is not None:
                self._activate(active)
            log.info(
                "session_engine: loaded %d sessions, active=%s",
                len(collection.records),
                active.id if active is not None else None,
            )
            return active

    def create_session(self, game_mode: str = DEFAULT_GAME_MODE, *, name: str | None = None) -> GameRecord:
        with self._claim():
            record = self._new_record(game_mode, name=name)
            self.sessions.add(record, activate=True)
            self.graph.reset()
            self._persist(record)
            return record

    def load_session(self, session_id: str) -> GameRecord:
        with self._claim():
            record = self._require_record(session_id)
            self._activate(record)
            self.gateway.save_active_pointer(record.id)
            return record

    def start_session(
        self,
        game_mode: str = DEFAULT_GAME_MODE,
        *,
        name: str | None = None,
        on_token: TokenSink | None = None,
    ) -> StoryNode:
        """Create a session, make it active and generate its opening node.

        The session survives a failed generation, empty and active.
        """
        with self._claim():
            record = self._new_record(game_mode, name=name)
            self.sessions.add(record, activate=True)
            self.graph.reset()
            self._persist(record)
            log.info("session_engine: started session %s mode=%s", record.id, record.game_mode)

            context = self.context_builder.build(record)
            prompt = self.composer.compose(context, record.game_mode, "initial")
            draft = self._generate(prompt, on_token)

            node = self._node_from_draft(START_NODE_ID, draft)
            self.graph.insert(node)
            apply_effects(node.effects, record)
            record.current_node_id = node.id
            record.current_page_index = 0
            self._commit(record)
            log.info("session_engine: committed opening node for %s", record.id)
            return node

    def make_choice(
        self,
        choice_id: str | None = None,
        *,
        custom_text: str | None = None,
        on_token: TokenSink | None = None,
    ) -> StoryNode:
        with self._claim():
            record = self._require_active()
            current = self.current_node()
            if current is None:
                raise NoActiveSessionError(f"session {record.id} has no current node")
            choice = self._resolve_choice(current, choice_id, custom_text)
            if current.selected_choice is not None and current.selected_choice != choice.text:
                raise AlreadyFinalizedError(current.id, existing=current.selected_choice, attempted=choice.text)

            summary = f"{current.title}: {choice.text}"
            preview = record.model_copy(
                update={
                    "history": [*record.history, current.id],
                    "story_history": [*record.story_history, summary],
                }
            )
            context = self.context_builder.build(preview, pending_choice=choice.text)
            prompt = self.composer.compose(context, record.game_mode, "continuation")
            draft = self._generate(prompt, on_token)

            node = self._node_from_draft(self.ids.new_id(NODE_ID_PREFIX), draft)
            self.graph.mark_selected_choice(current.id, choice.text)
            self.graph.insert(node)
            record.history.append(current.id)
            record.story_history.append(summary)
            record.current_node_id = node.id
            record.current_page_index = self.graph.page_count() - 1
            apply_effects(node.effects, record)
            self._commit(record)
            log.info(
                "session_engine: committed node %s for %s (page %d)",
                node.id,
                record.id,
                record.current_page_index + 1,
            )
            return node

    def navigate(self, direction: Direction, page: int | None = None) -> StoryNode | None:
        """Move the page pointer. ``goto`` takes a 1-based page; out-of-range targets are a no-op."""
        with self._claim():
            record = self.sessions.active()
            if record is None or record.current_node_id is None:
                return None
            if direction == "prev":
                target = record.current_page_index - 1
            elif direction == "next":
                target = record.current_page_index + 1
            elif direction == "goto":
                if page is None:
                    return None
                target = int(page) - 1
            else:
                raise ValueError(f"unknown navigation direction: {direction}")
            if target < 0 or target >= self.graph.page_count():
                return None
            node = self.graph.node_at(target)
            record.current_page_index = target
            record.current_node_id = node.id
            record.updated_at = next_update_ms(record.updated_at)
            self._persist(record)
            return node

    def reset_session(self) -> GameRecord:
        with self._claim():
            record = self._require_active()
            self.graph.reset()
            record.nodes = []
            record.history = []
            record.story_history = []
            record.variables = {}
            record.inventory = []
            record.current_node_id = None
            record.current_page_index = 0
            record.updated_at = next_update_ms(record.updated_at)
            self._persist(record)
            log.info("session_engine: reset session %s", record.id)
            return record

    def delete_session(self, session_id: str) -> None:
        with self._claim():
            was_active = self.sessions.active_id == session_id
            removed = self.sessions.remove(session_id)
            if removed is None:
                raise SessionNotFoundError(session_id)
            if was_active:
                self.graph.reset()
            self.gateway.delete(session_id, next_update_ms(removed.updated_at))
            if was_active:
                self.gateway.save_active_pointer(None)
            log.info("session_engine: deleted session %s", session_id)

    def export_session(self, session_id: str | None = None) -> str:
        if session_id is None:
            record = self._require_active()
        else:
            record = self._require_record(session_id)
        return dumps_document(record)

    def import_session(self, blob: str | dict) -> GameRecord:
        """Import a save document under a fresh id and make it active. Nothing changes on a bad document."""
        with self._claim():
            record = parse_document(blob, record_id=self.ids.new_id(IMPORTED_SESSION_ID_PREFIX))
            record.updated_at = now_ms()
            self.sessions.add(record, activate=True)
            self._activate(record)
            self._persist(record)
            log.info("session_engine: imported session %s with %d nodes", record.id, record.total_pages)
            return record

    # -- internals ---------------------------------------------------------

    def _generate(self, prompt: ComposedPrompt, on_token: TokenSink | None) -> StoryNodeDraft:
        return self.generator.generate(
            prompt,
            stream=bool(self.config.llm_stream_enabled),
            on_token=on_token,
        )

    def _new_record(self, game_mode: str, *, name: str | None) -> GameRecord:
        mode = str(game_mode or "").strip() or DEFAULT_GAME_MODE
        created = now_ms()
        return GameRecord(
            id=self.ids.new_id(SESSION_ID_PREFIX),
            name=(name or "").strip() or self._default_name(mode),
            game_mode=mode,
            created_at=created,
            updated_at=created,
        )

    def _default_name(self, game_mode: str) -> str:
        stamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        return f"{self.composer.mode_display_name(game_mode)} - {stamp}"

    def _require_active(self) -> GameRecord:
        record = self.sessions.active()
        if record is None:
            raise NoActiveSessionError("no active session")
        return record

    def _require_record(self, session_id: str) -> GameRecord:
        record = self.sessions.records.get(session_id)
        if record is None:
            raise SessionNotFoundError(session_id)
        return record

    def _activate(self, record: GameRecord) -> None:
        self.sessions.active_id = record.id
        self.graph.load(record.nodes)
        if record.current_node_id is None or not self.graph.contains(record.current_node_id):
            if self.graph.page_count():
                first = self.graph.node_at(0)
                log.warning(
                    "session_engine: session %s points at missing node %s, falling back to %s",
                    record.id,
                    record.current_node_id,
                    first.id,
                )
                record.current_node_id = first.id
                record.current_page_index = 0
            else:
                record.current_node_id = None
                record.current_page_index = 0
        else:
            record.current_page_index = self.graph.index_of(record.current_node_id)

    @staticmethod
    def _resolve_choice(node: StoryNode, choice_id: str | None, custom_text: str | None) -> Choice:
        text = (custom_text or "").strip()
        if text:
            return Choice(id=f"{CUSTOM_CHOICE_PREFIX}_{now_ms()}", text=text)
        if not choice_id:
            raise ValueError("either choice_id or custom_text is required")
        choice = node.find_choice(choice_id)
        if choice is None:
            raise ChoiceNotFoundError(choice_id)
        return choice

    @staticmethod
    def _node_from_draft(node_id: str, draft: StoryNodeDraft) -> StoryNode:
        return StoryNode(
            id=node_id,
            title=draft.title,
            content=draft.content,
            choices=[choice.model_copy() for choice in draft.choices],
            effects=dict(draft.effects) if draft.effects else None,
            is_generated=True,
            created_at=now_ms(),
        )

    def _commit(self, record: GameRecord) -> None:
        record.nodes = self.graph.snapshot()
        record.updated_at = next_update_ms(record.updated_at)
        self._persist(record)

    def _persist(self, record: GameRecord) -> None:
        self.gateway.save(record)
        self.gateway.save_active_pointer(self.sessions.active_id)
