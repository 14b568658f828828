from __future__ import annotations

import json

from jsonschema import Draft202012Validator
from jsonschema import ValidationError as JSONSchemaValidationError
from pydantic import ValidationError

from storyweave.modules.llm_boundary.errors import (
    GENERATION_ERROR_PARSE,
    GENERATION_ERROR_SCHEMA,
    GenerationError,
)
from storyweave.modules.llm_boundary.schemas import STORY_NODE_SCHEMA, StoryNodeDraft

_decoder = json.JSONDecoder()


def _snippet(raw: object, limit: int = 240) -> str | None:
    if raw is None:
        return None
    text = raw if isinstance(raw, str) else json.dumps(raw, ensure_ascii=False)
    text = " ".join(str(text).split())
    if not text:
        return None
    return text[:limit]


def extract_first_object(raw: str) -> dict:
    """Return the first decodable top-level JSON object in ``raw``, ignoring surrounding prose."""
    text = str(raw or "")
    start = text.find("{")
    while start != -1:
        try:
            candidate, _end = _decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        if isinstance(candidate, dict):
            return candidate
        start = text.find("{", start + 1)
    raise GenerationError(
        "no json object found in model output",
        error_kind=GENERATION_ERROR_PARSE,
        raw_snippet=_snippet(text),
    )


def validate_schema(payload: object, schema: dict) -> None:
    try:
        Draft202012Validator(schema).validate(payload)
    except JSONSchemaValidationError as exc:
        raise GenerationError(
            f"schema validate failed: {exc.message}",
            error_kind=GENERATION_ERROR_SCHEMA,
            raw_snippet=_snippet(payload),
        ) from exc


def normalize_choices(raw_choices: list) -> list[dict]:
    normalized: list[dict] = []
    used_ids: set[str] = set()
    for index, item in enumerate(raw_choices, start=1):
        entry = item if isinstance(item, dict) else {"text": item}
        choice_id = str(entry.get("id") or "").strip()
        if not choice_id or choice_id in used_ids:
            choice_id = f"choice{index}"
            while choice_id in used_ids:
                choice_id = f"{choice_id}_{index}"
        used_ids.add(choice_id)
        text = " ".join(str(entry.get("text") or "").split()) or f"Choice {index}"
        consequence = entry.get("consequence")
        normalized.append(
            {
                "id": choice_id,
                "text": text,
                "consequence": str(consequence).strip() if consequence else None,
            }
        )
    return normalized


def parse_story_node(raw: str) -> StoryNodeDraft:
    payload = extract_first_object(raw)
    validate_schema(payload, STORY_NODE_SCHEMA)
    title = str(payload["title"]).strip()
    content = str(payload["content"]).strip()
    if not title or not content:
        raise GenerationError(
            "title and content must not be blank",
            error_kind=GENERATION_ERROR_SCHEMA,
            raw_snippet=_snippet(payload),
        )
    effects = payload.get("effects")
    try:
        return StoryNodeDraft(
            title=title,
            content=content,
            choices=normalize_choices(payload["choices"]),
            effects=dict(effects) if isinstance(effects, dict) else None,
        )
    except ValidationError as exc:
        raise GenerationError(
            f"story node draft invalid: {exc}",
            error_kind=GENERATION_ERROR_SCHEMA,
            raw_snippet=_snippet(payload),
        ) from exc
