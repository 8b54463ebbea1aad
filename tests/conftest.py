from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator

import pytest
import pytest_asyncio

from travel_chat.ai.client import ModelClient
from travel_chat.ai.conversation import ContextMessage
from travel_chat.ai.dispatcher import ToolDispatcher
from travel_chat.ai.fragments import Fragment, StreamEnd, ToolArgumentsFragment, ToolCallStart
from travel_chat.ai.tool_runner import TurnRunner
from travel_chat.ai.tools.base import Tool
from travel_chat.ai.tools.registry import ToolRegistry
from travel_chat.config import AIConfig
from travel_chat.core.session import SessionManager
from travel_chat.storage.database import Database
from travel_chat.storage.message_repo import MessageStore
from travel_chat.storage.session_repo import SessionRepository

SYSTEM_PROMPT = "You are a helpful travel assistant."


@dataclass(frozen=True)
class Pause:
    """Script marker: sleep before yielding the next fragment."""

    seconds: float


class ScriptedModelClient(ModelClient):
    """Replays one scripted fragment list per model call.

    Script items may also be exceptions (raised mid-stream) or Pause markers.
    """

    def __init__(self, rounds: list[list[Any]], title_reply: str | Exception = "Bali Getaway"):
        self.rounds = list(rounds)
        self.calls: list[list[ContextMessage]] = []
        self.tools_seen: list[list[str]] = []
        self.title_reply = title_reply
        self.title_prompts: list[str] = []

    async def stream(
        self,
        context: list[ContextMessage],
        tools: list[Tool],
        *,
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> AsyncIterator[Fragment]:
        self.calls.append(list(context))
        self.tools_seen.append([t.name for t in tools])
        script = self.rounds.pop(0)
        for item in script:
            if isinstance(item, Exception):
                raise item
            if isinstance(item, Pause):
                await asyncio.sleep(item.seconds)
                continue
            yield item

    async def complete_text(
        self,
        system: str,
        prompt: str,
        *,
        model: str,
        max_tokens: int = 20,
        temperature: float = 0.7,
    ) -> str:
        self.title_prompts.append(prompt)
        if isinstance(self.title_reply, Exception):
            raise self.title_reply
        return self.title_reply


def tool_call(index: int, call_id: str, name: str, arguments: str, parts: int = 1) -> list[Fragment]:
    """Fragments for one tool call with its arguments split into ``parts`` pieces."""
    size = max(1, -(-len(arguments) // parts))
    pieces = [arguments[i : i + size] for i in range(0, len(arguments), size)]
    return [ToolCallStart(index=index, call_id=call_id, name=name)] + [
        ToolArgumentsFragment(index=index, delta=piece, call_id=call_id) for piece in pieces
    ]


def end(reason: str = "stop") -> StreamEnd:
    return StreamEnd(finish_reason=reason)


def assert_tool_results_follow_calls(roles_and_messages) -> None:
    """Every assistant-with-tool-calls message is followed by exactly one tool message per call."""
    records = list(roles_and_messages)
    i = 0
    while i < len(records):
        record = records[i]
        if record.role == "assistant" and record.tool_calls:
            expected = [c.id for c in record.tool_calls]
            answered = []
            j = i + 1
            while j < len(records) and records[j].role == "tool":
                answered.append(records[j].tool_call_id)
                j += 1
            assert answered == expected
            i = j
        else:
            assert record.role != "tool", "tool message without a preceding tool call"
            i += 1


@pytest_asyncio.fixture
async def db(tmp_path) -> AsyncIterator[Database]:
    database = Database(str(tmp_path / "travel_chat.db"))
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
def store(db: Database) -> MessageStore:
    return MessageStore(db)


@pytest.fixture
def session_manager(db: Database) -> SessionManager:
    return SessionManager(SessionRepository(db))


@pytest.fixture
def registry() -> ToolRegistry:
    return ToolRegistry()


@pytest.fixture
def ai_config() -> AIConfig:
    return AIConfig(
        model="test-model",
        system_prompt=SYSTEM_PROMPT,
        max_tool_rounds=5,
        stream_idle_timeout=5.0,
        tool_timeout=5.0,
    )


@pytest.fixture
def make_runner(store: MessageStore, registry: ToolRegistry, ai_config: AIConfig):
    def _make(client: ModelClient, **overrides: Any) -> TurnRunner:
        config = ai_config.model_copy(update=overrides)
        return TurnRunner(
            client=client,
            message_store=store,
            dispatcher=ToolDispatcher(registry, timeout=config.tool_timeout),
            tools=registry.all_tools(),
            ai_config=config,
        )

    return _make
