import json
import logging
import queue
import threading

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import PlainTextResponse, StreamingResponse

from storyweave.modules.llm_boundary.errors import GenerationError
from storyweave.modules.session.deps import get_engine
from storyweave.modules.session.engine import SessionEngine
from storyweave.modules.session.errors import (
    ChoiceNotFoundError,
    NoActiveSessionError,
    SessionBusyError,
    SessionNotFoundError,
)
from storyweave.modules.session.schemas import (
    ChoiceRequest,
    ImportRequest,
    NavigateOut,
    NavigateRequest,
    SessionCreateRequest,
    SessionStateOut,
    SessionSummaryOut,
    StoryNodeOut,
)
from storyweave.modules.story.errors import AlreadyFinalizedError, ImportValidationError

log = logging.getLogger("storyweave")

router = APIRouter(prefix="", tags=["sessions"])

_STREAM_DONE = object()


def _sse_encode(event_name: str, payload: dict) -> str:
    return f"event: {event_name}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


def _error_status(exc: Exception) -> tuple[int, dict]:
    if isinstance(exc, SessionNotFoundError):
        return 404, {"code": "SESSION_NOT_FOUND", "session_id": exc.session_id}
    if isinstance(exc, ChoiceNotFoundError):
        return 404, {"code": "CHOICE_NOT_FOUND", "choice_id": exc.choice_id}
    if isinstance(exc, NoActiveSessionError):
        return 404, {"code": "NO_ACTIVE_SESSION"}
    if isinstance(exc, SessionBusyError):
        return 409, {"code": "SESSION_BUSY"}
    if isinstance(exc, AlreadyFinalizedError):
        return 409, {"code": "CHOICE_ALREADY_MADE", "node_id": exc.node_id}
    if isinstance(exc, ImportValidationError):
        return 422, {"code": "IMPORT_INVALID", "message": str(exc)}
    if isinstance(exc, GenerationError):
        return 502, {"code": "GENERATION_FAILED", "kind": exc.error_kind, "message": str(exc)}
    if isinstance(exc, ValueError):
        return 400, {"code": "BAD_REQUEST", "message": str(exc)}
    return 500, {"code": "INTERNAL_ERROR"}


_MAPPED_ERRORS = (
    SessionNotFoundError,
    ChoiceNotFoundError,
    NoActiveSessionError,
    SessionBusyError,
    AlreadyFinalizedError,
    ImportValidationError,
    GenerationError,
    ValueError,
)


def _to_http(exc: Exception) -> HTTPException:
    status, detail = _error_status(exc)
    return HTTPException(status_code=status, detail=detail)


def _state(engine: SessionEngine) -> SessionStateOut:
    record = engine.active_session()
    if record is None:
        raise HTTPException(status_code=404, detail={"code": "NO_ACTIVE_SESSION"})
    node = engine.current_node()
    summary = SessionSummaryOut.from_record(record)
    return SessionStateOut(
        **summary.model_dump(),
        current_page=engine.current_page(),
        can_go_previous=engine.can_go_previous(),
        can_go_next=engine.can_go_next(),
        generating=engine.generating,
        variables=dict(record.variables),
        inventory=list(record.inventory),
        history=list(record.history),
        story_history=list(record.story_history),
        current_node=StoryNodeOut.from_node(node) if node is not None else None,
    )


@router.post("/sessions", response_model=SessionStateOut)
def start_session(
    payload: SessionCreateRequest,
    engine: SessionEngine = Depends(get_engine),
):
    try:
        engine.start_session(payload.game_mode, name=payload.name)
    except _MAPPED_ERRORS as exc:
        raise _to_http(exc) from exc
    return _state(engine)


@router.get("/sessions", response_model=list[SessionSummaryOut])
def list_sessions(engine: SessionEngine = Depends(get_engine)):
    return [SessionSummaryOut.from_record(record) for record in engine.list_sessions()]


@router.get("/sessions/active", response_model=SessionStateOut)
def get_active_session(engine: SessionEngine = Depends(get_engine)):
    return _state(engine)


@router.post("/sessions/active/choice", response_model=SessionStateOut)
def make_choice(
    payload: ChoiceRequest,
    engine: SessionEngine = Depends(get_engine),
):
    try:
        engine.make_choice(payload.choice_id, custom_text=payload.custom_text)
    except _MAPPED_ERRORS as exc:
        raise _to_http(exc) from exc
    return _state(engine)


@router.post("/sessions/active/choice/stream")
def make_choice_stream(
    payload: ChoiceRequest,
    engine: SessionEngine = Depends(get_engine),
):
    events: queue.Queue = queue.Queue()

    def _worker() -> None:
        try:
            node = engine.make_choice(
                payload.choice_id,
                custom_text=payload.custom_text,
                on_token=lambda text: events.put(("delta", {"text": text})),
            )
            events.put(("node", StoryNodeOut.from_node(node).model_dump()))
        except _MAPPED_ERRORS as exc:
            status, detail = _error_status(exc)
            events.put(("error", {"status": status, "detail": detail}))
        except Exception:
            log.exception("session_router: streamed choice failed")
            events.put(("error", {"status": 500, "detail": {"code": "INTERNAL_ERROR"}}))
        finally:
            events.put(_STREAM_DONE)

    def _event_stream():
        thread = threading.Thread(target=_worker, name="storyweave-turn", daemon=True)
        thread.start()
        while True:
            item = events.get()
            if item is _STREAM_DONE:
                break
            event_name, data = item
            yield _sse_encode(event_name, data)
        thread.join()

    return StreamingResponse(_event_stream(), media_type="text/event-stream")


@router.post("/sessions/active/navigate", response_model=NavigateOut)
def navigate(
    payload: NavigateRequest,
    engine: SessionEngine = Depends(get_engine),
):
    try:
        node = engine.navigate(payload.direction, payload.page)
    except _MAPPED_ERRORS as exc:
        raise _to_http(exc) from exc
    return NavigateOut(moved=node is not None, state=_state(engine))


@router.post("/sessions/active/reset", response_model=SessionStateOut)
def reset_session(engine: SessionEngine = Depends(get_engine)):
    try:
        engine.reset_session()
    except _MAPPED_ERRORS as exc:
        raise _to_http(exc) from exc
    return _state(engine)


@router.delete("/sessions/{session_id}")
def delete_session(
    session_id: str,
    engine: SessionEngine = Depends(get_engine),
):
    try:
        engine.delete_session(session_id)
    except _MAPPED_ERRORS as exc:
        raise _to_http(exc) from exc
    return {"deleted": session_id}


@router.post("/sessions/{session_id}/load", response_model=SessionStateOut)
def load_session(
    session_id: str,
    engine: SessionEngine = Depends(get_engine),
):
    try:
        engine.load_session(session_id)
    except _MAPPED_ERRORS as exc:
        raise _to_http(exc) from exc
    return _state(engine)


@router.get("/sessions/active/export", response_class=PlainTextResponse)
def export_session(engine: SessionEngine = Depends(get_engine)):
    try:
        document = engine.export_session()
    except _MAPPED_ERRORS as exc:
        raise _to_http(exc) from exc
    return PlainTextResponse(document, media_type="application/json")


@router.post("/sessions/import", response_model=SessionStateOut)
def import_session(
    payload: ImportRequest,
    engine: SessionEngine = Depends(get_engine),
):
    try:
        engine.import_session(payload.document)
    except _MAPPED_ERRORS as exc:
        raise _to_http(exc) from exc
    return _state(engine)
