"""Data models for storage layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class ToolCallRequest:
    """A complete tool invocation requested by the model.

    Only built once the streamed arguments parse as a whole JSON object, so a
    partially received call never reaches storage.
    """

    id: str
    name: str
    arguments: dict[str, Any]

    def arguments_json(self) -> str:
        return json.dumps(self.arguments, ensure_ascii=False)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolCallRequest:
        # Chat-completions shape: {"id", "type", "function": {"name", "arguments": "<json>"}}
        function = data.get("function") or data
        arguments = function.get("arguments") or {}
        if isinstance(arguments, str):
            arguments = json.loads(arguments)
        return cls(id=data["id"], name=function["name"], arguments=arguments)


@dataclass
class MessageRecord:
    session_id: str
    role: str  # "system" | "user" | "assistant" | "tool"
    content: str
    tool_calls: Optional[list[ToolCallRequest]] = None  # assistant only
    tool_call_id: Optional[str] = None  # tool only
    timestamp: datetime = field(default_factory=_utcnow)
    id: Optional[int] = None

    def tool_calls_json(self) -> Optional[str]:
        if not self.tool_calls:
            return None
        return json.dumps([c.to_dict() for c in self.tool_calls], ensure_ascii=False)


@dataclass
class ChatSession:
    id: str
    owner_id: Optional[str] = None
    saved: bool = False
    title: Optional[str] = None
    tagline: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def temporary(self) -> bool:
        return not self.saved
