"""Provider-neutral streaming fragments.

Model clients translate their SDK's stream events into these types, so the
aggregator and turn runner never see provider-specific payloads.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union


@dataclass(frozen=True, slots=True)
class TextFragment:
    text: str


@dataclass(frozen=True, slots=True)
class ToolCallStart:
    """Identifies a tool call. Providers may send the ID and name in separate chunks."""

    index: int
    call_id: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ToolArgumentsFragment:
    """A partial JSON string belonging to one tool call's arguments."""

    index: int
    delta: str
    call_id: Optional[str] = None  # Resolved from `index` when the provider omits it


@dataclass(frozen=True, slots=True)
class StreamEnd:
    finish_reason: Optional[str] = None


Fragment = Union[TextFragment, ToolCallStart, ToolArgumentsFragment, StreamEnd]
