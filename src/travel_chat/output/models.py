"""Events delivered to an output channel."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

# Wire framing for the end-of-turn marker on text-only channels
END_OF_TURN = "\n\0"


class EventKind(StrEnum):
    CHUNK = "chunk"
    END_OF_TURN = "end_of_turn"
    TITLE = "title"


@dataclass(frozen=True, slots=True)
class OutputEvent:
    session_id: str
    kind: EventKind
    text: str = ""
    tagline: str = ""  # TITLE events only

    @property
    def topic(self) -> str:
        """Per-session channel name, e.g. ``msg-<session_id>``."""
        if self.kind is EventKind.TITLE:
            return f"update-title-tagline-{self.session_id}"
        return f"msg-{self.session_id}"

    def wire_text(self) -> str:
        return END_OF_TURN if self.kind is EventKind.END_OF_TURN else self.text
