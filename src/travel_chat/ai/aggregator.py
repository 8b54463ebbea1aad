"""Reassembles streamed tool calls and separates them from display text."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Optional, Union

from travel_chat.ai.fragments import (
    Fragment,
    StreamEnd,
    TextFragment,
    ToolArgumentsFragment,
    ToolCallStart,
)
from travel_chat.log import get_logger
from travel_chat.storage.models import ToolCallRequest

logger = get_logger(__name__)


@dataclass
class _PendingCall:
    call_id: str
    name: str = ""
    buffer: str = ""
    completed: bool = False


class DeltaAggregator:
    """Consumes the fragments of one model call.

    Text is passed through for live display until the first tool-call fragment
    arrives; after that the rest of the call's text is suppressed. Argument
    fragments are buffered per call ID and the call becomes ready the first
    time its buffer parses as one complete JSON object. Calls are demultiplexed
    by ID, so fragments of different calls may interleave freely.

    One aggregator per model call; it is not reusable.
    """

    def __init__(self) -> None:
        self.tool_call_seen = False
        self.finish_reason: Optional[str] = None
        self._text_parts: list[str] = []
        self._calls: dict[str, _PendingCall] = {}
        self._ids_by_index: dict[int, str] = {}
        self._ready: list[ToolCallRequest] = []

    @property
    def text(self) -> str:
        """Display text accumulated before the first tool-call fragment."""
        return "".join(self._text_parts)

    @property
    def ready_calls(self) -> list[ToolCallRequest]:
        """Completed calls in the order they became ready."""
        return list(self._ready)

    def feed(self, fragment: Fragment) -> Union[str, ToolCallRequest, None]:
        """Process one fragment.

        Returns the text to display, a tool call that just became ready, or None.
        """
        match fragment:
            case TextFragment(text=text):
                if self.tool_call_seen or not text:
                    return None
                self._text_parts.append(text)
                return text
            case ToolCallStart(index=index, call_id=call_id, name=name):
                self.tool_call_seen = True
                call = self._resolve(index, call_id)
                if name:
                    call.name = name
                return None
            case ToolArgumentsFragment(index=index, delta=delta, call_id=call_id):
                self.tool_call_seen = True
                call = self._resolve(index, call_id)
                call.buffer += delta
                return self._try_complete(call)
            case StreamEnd(finish_reason=reason):
                self.finish_reason = reason
                return None
        raise TypeError(f"Unknown fragment type: {type(fragment).__name__}")

    def finish(self) -> list[str]:
        """Close the call and return the IDs of tool calls that never completed.

        Those calls are dropped: they are never dispatched or persisted.
        """
        dropped: list[str] = []
        for call in self._calls.values():
            if not call.completed:
                dropped.append(call.call_id)
                logger.warning(
                    "tool_call_incomplete",
                    call_id=call.call_id,
                    tool=call.name,
                    buffered_chars=len(call.buffer),
                )
            elif call.buffer.strip():
                logger.warning(
                    "tool_call_trailing_arguments",
                    call_id=call.call_id,
                    tool=call.name,
                    buffered_chars=len(call.buffer),
                )
        return dropped

    def _resolve(self, index: int, call_id: Optional[str]) -> _PendingCall:
        if call_id is None:
            call_id = self._ids_by_index.get(index)
            if call_id is None:
                # Provider never identified this call
                call_id = f"call_{index}"
                self._ids_by_index[index] = call_id
        else:
            self._ids_by_index[index] = call_id

        call = self._calls.get(call_id)
        if call is None:
            call = _PendingCall(call_id=call_id)
            self._calls[call_id] = call
        return call

    def _try_complete(self, call: _PendingCall) -> Optional[ToolCallRequest]:
        try:
            value = json.loads(call.buffer)
        except json.JSONDecodeError:
            return None
        if not isinstance(value, dict):
            return None

        # Later fragments under this ID start a fresh buffer
        call.buffer = ""
        if call.completed:
            logger.warning("tool_call_duplicate_completion", call_id=call.call_id, tool=call.name)
            return None

        call.completed = True
        request = ToolCallRequest(id=call.call_id, name=call.name, arguments=value)
        self._ready.append(request)
        logger.info("tool_call_ready", call_id=call.call_id, tool=call.name)
        return request
