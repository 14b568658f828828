from __future__ import annotations


class SessionEngineError(RuntimeError):
    pass


class SessionBusyError(SessionEngineError):
    """Raised when a mutating operation arrives while a generation is outstanding."""


class NoActiveSessionError(SessionEngineError):
    pass


class SessionNotFoundError(SessionEngineError, KeyError):
    def __init__(self, session_id: str):
        super().__init__(f"session not found: {session_id}")
        self.session_id = session_id

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""


class ChoiceNotFoundError(SessionEngineError, KeyError):
    def __init__(self, choice_id: str):
        super().__init__(f"choice not found on current node: {choice_id}")
        self.choice_id = choice_id

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else ""
