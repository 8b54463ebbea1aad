"""Streaming model clients for the Anthropic and OpenAI APIs."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, AsyncIterator

from travel_chat.ai.conversation import ContextMessage, to_anthropic_messages, to_openai_messages
from travel_chat.ai.fragments import (
    Fragment,
    StreamEnd,
    TextFragment,
    ToolArgumentsFragment,
    ToolCallStart,
)
from travel_chat.ai.tools.base import Tool
from travel_chat.config import AnthropicConfig, OpenAIConfig
from travel_chat.log import get_logger

logger = get_logger(__name__)


class ModelClient(ABC):
    """Abstract base class for model backends."""

    @abstractmethod
    def stream(
        self,
        context: list[ContextMessage],
        tools: list[Tool],
        *,
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> AsyncIterator[Fragment]:
        """Start one streaming model call and yield its fragments.

        The final fragment is always a ``StreamEnd``. SDK errors propagate
        unchanged; the caller decides how a failed call affects the turn.
        """
        ...

    @abstractmethod
    async def complete_text(
        self,
        system: str,
        prompt: str,
        *,
        model: str,
        max_tokens: int = 20,
        temperature: float = 0.7,
    ) -> str:
        """Single non-streaming, tool-free completion returning plain text."""
        ...


class AnthropicClient(ModelClient):
    """Anthropic API backend using the official SDK."""

    def __init__(self, config: AnthropicConfig):
        import anthropic

        self._client = anthropic.AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    async def stream(
        self,
        context: list[ContextMessage],
        tools: list[Tool],
        *,
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> AsyncIterator[Fragment]:
        system, messages = to_anthropic_messages(context)
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": messages,
            "temperature": temperature,
            "stream": True,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = [t.to_anthropic_dict() for t in tools]

        logger.debug("api_request", provider="anthropic", model=model, message_count=len(messages))
        response = await self._client.messages.create(**kwargs)

        tool_ids: dict[int, str] = {}  # content block index -> tool_use id
        with_arguments: set[int] = set()
        stop_reason = None

        async for event in response:
            if event.type == "content_block_start":
                block = event.content_block
                if block.type == "tool_use":
                    tool_ids[event.index] = block.id
                    yield ToolCallStart(index=event.index, call_id=block.id, name=block.name)

            elif event.type == "content_block_delta":
                delta = event.delta
                if delta.type == "text_delta":
                    yield TextFragment(delta.text)
                elif delta.type == "input_json_delta" and delta.partial_json:
                    with_arguments.add(event.index)
                    yield ToolArgumentsFragment(
                        index=event.index,
                        delta=delta.partial_json,
                        call_id=tool_ids.get(event.index),
                    )

            elif event.type == "content_block_stop":
                if event.index in tool_ids and event.index not in with_arguments:
                    # Tool called with no arguments at all
                    yield ToolArgumentsFragment(
                        index=event.index, delta="{}", call_id=tool_ids[event.index]
                    )

            elif event.type == "message_delta":
                stop_reason = event.delta.stop_reason

        logger.debug("api_response", provider="anthropic", model=model, stop_reason=stop_reason)
        yield StreamEnd(finish_reason=stop_reason)

    async def complete_text(
        self,
        system: str,
        prompt: str,
        *,
        model: str,
        max_tokens: int = 20,
        temperature: float = 0.7,
    ) -> str:
        response = await self._client.messages.create(
            model=model,
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
        )
        return "".join(b.text for b in response.content if b.type == "text")


class OpenAIClient(ModelClient):
    """OpenAI chat-completions backend using the official SDK."""

    def __init__(self, config: OpenAIConfig):
        import openai

        self._client = openai.AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            organization=config.organization,
            max_retries=config.max_retries,
            timeout=config.timeout,
        )

    async def stream(
        self,
        context: list[ContextMessage],
        tools: list[Tool],
        *,
        model: str,
        max_tokens: int = 4096,
        temperature: float = 0.7,
    ) -> AsyncIterator[Fragment]:
        messages = to_openai_messages(context)
        kwargs: dict[str, Any] = {
            "model": model,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "stream": True,
        }
        if tools:
            kwargs["tools"] = [t.to_openai_dict() for t in tools]

        logger.debug("api_request", provider="openai", model=model, message_count=len(messages))
        response = await self._client.chat.completions.create(**kwargs)

        finish_reason = None
        async for chunk in response:
            if not chunk.choices:
                continue
            choice = chunk.choices[0]
            delta = choice.delta

            # Tool fragments first: content sharing a chunk with a tool call is not display text
            for call in delta.tool_calls or []:
                function = call.function
                name = function.name if function else None
                if call.id or name:
                    yield ToolCallStart(index=call.index, call_id=call.id, name=name)
                if function and function.arguments:
                    yield ToolArgumentsFragment(
                        index=call.index, delta=function.arguments, call_id=call.id
                    )

            if delta.content:
                yield TextFragment(delta.content)

            if choice.finish_reason:
                finish_reason = choice.finish_reason

        logger.debug("api_response", provider="openai", model=model, finish_reason=finish_reason)
        yield StreamEnd(finish_reason=finish_reason)

    async def complete_text(
        self,
        system: str,
        prompt: str,
        *,
        model: str,
        max_tokens: int = 20,
        temperature: float = 0.7,
    ) -> str:
        completion = await self._client.chat.completions.create(
            model=model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": prompt},
            ],
            max_tokens=max_tokens,
            temperature=temperature,
        )
        if not completion.choices:
            return ""
        return completion.choices[0].message.content or ""
