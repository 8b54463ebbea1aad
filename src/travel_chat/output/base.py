"""Abstract output channel interface."""

from __future__ import annotations

from abc import ABC, abstractmethod


class OutputSink(ABC):
    """Receives a session's streamed text and end-of-turn markers in order.

    Delivery is best-effort: the turn runner logs sink failures and keeps going.
    To add a transport (web socket, SSE, ...), subclass this.
    """

    @abstractmethod
    async def send_chunk(self, session_id: str, text: str) -> None:
        """Deliver one streamed text chunk."""
        ...

    @abstractmethod
    async def end_turn(self, session_id: str) -> None:
        """Signal that the assistant finished its turn."""
        ...

    async def title_updated(self, session_id: str, title: str, tagline: str) -> None:
        """Notify that the session's title/tagline changed. Optional."""
        return None
