"""Exception hierarchy for travel-chat."""

from __future__ import annotations


class TravelChatError(Exception):
    """Base class for all travel-chat errors."""


class SessionNotFoundError(TravelChatError):
    def __init__(self, session_id: str):
        super().__init__(f"Chat session not found: {session_id}")
        self.session_id = session_id


class SessionStateError(TravelChatError):
    """A lifecycle operation is not valid for the session's current state."""


class TurnError(TravelChatError):
    """A turn terminated without producing a final assistant message."""

    def __init__(self, session_id: str, message: str):
        super().__init__(message)
        self.session_id = session_id


class ModelStreamError(TurnError):
    """The upstream model call failed, was rejected, or stalled."""


class ToolLoopLimitError(TurnError):
    def __init__(self, session_id: str, max_rounds: int):
        super().__init__(
            session_id,
            f"Tool execution limit reached ({max_rounds} rounds) in session {session_id}",
        )
        self.max_rounds = max_rounds


class TurnCancelledError(TurnError):
    def __init__(self, session_id: str):
        super().__init__(session_id, f"Turn cancelled for session {session_id}")
