"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class TurnState(StrEnum):
    LOADING_HISTORY = "loading_history"
    SEEDING_SYSTEM = "seeding_system"
    AWAITING_MODEL = "awaiting_model"
    STREAMING = "streaming"
    DISPATCHING_TOOLS = "dispatching_tools"
    FINALIZING = "finalizing"
    DONE = "done"
    ERROR = "error"


class Backend(StrEnum):
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
