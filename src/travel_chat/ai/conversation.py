"""Conversation context: stored history <-> model request messages."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from travel_chat.core.types import Role
from travel_chat.storage.models import MessageRecord, ToolCallRequest

# Anthropic requires at least one user turn; used when asking for an opening greeting
OPENING_USER_PROMPT = "(The user has opened a new conversation. Greet them.)"


@dataclass(frozen=True)
class ContextMessage:
    """One role-specific message as handed to the model."""

    role: Role
    content: str
    tool_calls: tuple[ToolCallRequest, ...] = field(default_factory=tuple)
    tool_call_id: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> ContextMessage:
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> ContextMessage:
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str, tool_calls: list[ToolCallRequest] | None = None) -> ContextMessage:
        return cls(role=Role.ASSISTANT, content=content, tool_calls=tuple(tool_calls or ()))

    @classmethod
    def tool(cls, content: str, tool_call_id: str) -> ContextMessage:
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id)


def build_context(history: list[MessageRecord]) -> list[ContextMessage]:
    """Convert stored records back into the context shape used for model calls."""
    context: list[ContextMessage] = []
    for record in history:
        role = Role(record.role)
        if role is Role.TOOL:
            context.append(ContextMessage.tool(record.content, record.tool_call_id or ""))
        elif role is Role.ASSISTANT:
            context.append(ContextMessage.assistant(record.content, record.tool_calls))
        else:
            context.append(ContextMessage(role=role, content=record.content))
    return context


def to_record(session_id: str, message: ContextMessage) -> MessageRecord:
    return MessageRecord(
        session_id=session_id,
        role=message.role.value,
        content=message.content,
        tool_calls=list(message.tool_calls) or None,
        tool_call_id=message.tool_call_id,
    )


def to_openai_messages(context: list[ContextMessage]) -> list[dict[str, Any]]:
    """Render context in the OpenAI chat-completions message format."""
    messages: list[dict[str, Any]] = []
    for msg in context:
        if msg.role is Role.TOOL:
            messages.append({"role": "tool", "content": msg.content, "tool_call_id": msg.tool_call_id})
        elif msg.role is Role.ASSISTANT and msg.tool_calls:
            messages.append(
                {
                    "role": "assistant",
                    "content": msg.content,
                    "tool_calls": [
                        {
                            "id": call.id,
                            "type": "function",
                            "function": {"name": call.name, "arguments": call.arguments_json()},
                        }
                        for call in msg.tool_calls
                    ],
                }
            )
        else:
            messages.append({"role": msg.role.value, "content": msg.content})
    return messages


def to_anthropic_messages(context: list[ContextMessage]) -> tuple[str, list[dict[str, Any]]]:
    """Render context in the Anthropic Messages API format.

    Returns ``(system, messages)``: system messages are lifted into the system
    prompt, assistant tool calls become ``tool_use`` blocks, and each run of
    consecutive tool messages becomes one user message of ``tool_result`` blocks.
    """
    system_parts: list[str] = []
    messages: list[dict[str, Any]] = []
    i = 0

    while i < len(context):
        msg = context[i]

        if msg.role is Role.SYSTEM:
            system_parts.append(msg.content)
            i += 1

        elif msg.role is Role.USER:
            messages.append({"role": "user", "content": msg.content})
            i += 1

        elif msg.role is Role.ASSISTANT:
            if msg.tool_calls:
                content_blocks: list[dict[str, Any]] = []
                if msg.content:
                    content_blocks.append({"type": "text", "text": msg.content})
                for call in msg.tool_calls:
                    content_blocks.append(
                        {"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments}
                    )
                messages.append({"role": "assistant", "content": content_blocks})
            elif msg.content:
                # Anthropic rejects empty text content
                messages.append({"role": "assistant", "content": msg.content})
            i += 1

        else:
            result_blocks: list[dict[str, Any]] = []
            while i < len(context) and context[i].role is Role.TOOL:
                result_blocks.append(
                    {
                        "type": "tool_result",
                        "tool_use_id": context[i].tool_call_id,
                        "content": context[i].content,
                    }
                )
                i += 1
            messages.append({"role": "user", "content": result_blocks})

    # The greeting answered this prompt; keep it in front on every later request too
    if not messages or messages[0]["role"] == "assistant":
        messages.insert(0, {"role": "user", "content": OPENING_USER_PROMPT})

    return "\n\n".join(system_parts), messages
