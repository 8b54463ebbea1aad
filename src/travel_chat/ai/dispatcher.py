"""Runs completed tool calls against their capability providers."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import BaseModel

from travel_chat.ai.tools.registry import ToolRegistry
from travel_chat.log import get_logger
from travel_chat.storage.models import ToolCallRequest

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ToolInvocationResult:
    call_id: str
    tool_name: str
    content: str  # Provider result serialized to text, or a JSON error object
    is_error: bool = False


def serialize_result(result: Any) -> str:
    """Serialize a provider result for a `tool` message."""
    if isinstance(result, str):
        return result
    if isinstance(result, BaseModel):
        return result.model_dump_json()
    return json.dumps(result, ensure_ascii=False, default=str)


def _error(request: ToolCallRequest, message: str) -> ToolInvocationResult:
    return ToolInvocationResult(
        call_id=request.id,
        tool_name=request.name,
        content=json.dumps({"error": message}, ensure_ascii=False),
        is_error=True,
    )


class ToolDispatcher:
    """Invokes tools by name and always produces a result.

    Unknown tools, provider exceptions, and timeouts become structured error
    results so the model can react to them on its next call.
    """

    def __init__(self, registry: ToolRegistry, timeout: Optional[float] = 30.0):
        self._registry = registry
        self._timeout = timeout

    async def invoke(self, request: ToolCallRequest) -> ToolInvocationResult:
        tool = self._registry.get(request.name)
        if tool is None:
            logger.warning("tool_unknown", tool=request.name, call_id=request.id)
            return _error(request, f"Function {request.name} not implemented.")

        logger.info("tool_execute", tool=request.name, call_id=request.id)
        deadline = asyncio.timeout(self._timeout)
        try:
            async with deadline:
                result = await tool.execute(**request.arguments)
        except Exception as e:
            if isinstance(e, TimeoutError) and deadline.expired():
                logger.error("tool_timeout", tool=request.name, call_id=request.id, timeout=self._timeout)
                return _error(request, f"Tool {request.name} timed out after {self._timeout} seconds.")
            logger.error("tool_execution_error", tool=request.name, call_id=request.id, error=str(e))
            return _error(request, f"Error executing {request.name}: {e}")

        try:
            content = serialize_result(result)
        except (TypeError, ValueError) as e:
            logger.error("tool_result_unserializable", tool=request.name, call_id=request.id, error=str(e))
            return _error(request, f"Tool {request.name} returned an unserializable result: {e}")

        return ToolInvocationResult(call_id=request.id, tool_name=request.name, content=content)
