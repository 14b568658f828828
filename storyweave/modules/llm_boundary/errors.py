from __future__ import annotations

GENERATION_ERROR_NETWORK = "network"
GENERATION_ERROR_HTTP = "http"
GENERATION_ERROR_PARSE = "parse"
GENERATION_ERROR_SCHEMA = "schema"

GENERATION_ERROR_KINDS = frozenset(
    {
        GENERATION_ERROR_NETWORK,
        GENERATION_ERROR_HTTP,
        GENERATION_ERROR_PARSE,
        GENERATION_ERROR_SCHEMA,
    }
)


class GenerationError(RuntimeError):
    """No node was produced. Session state must be left untouched."""

    def __init__(
        self,
        message: str,
        *,
        error_kind: str,
        status_code: int | None = None,
        raw_snippet: str | None = None,
    ):
        if error_kind not in GENERATION_ERROR_KINDS:
            raise ValueError(f"unknown generation error kind: {error_kind}")
        super().__init__(message)
        self.error_kind = error_kind
        self.status_code = status_code
        self.raw_snippet = raw_snippet
