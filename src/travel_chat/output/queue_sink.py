"""Sink that buffers events on an asyncio queue for a transport to drain."""

from __future__ import annotations

import asyncio

from travel_chat.output.base import OutputSink
from travel_chat.output.models import EventKind, OutputEvent


class QueueSink(OutputSink):
    def __init__(self, maxsize: int = 0):
        self.queue: asyncio.Queue[OutputEvent] = asyncio.Queue(maxsize=maxsize)

    async def send_chunk(self, session_id: str, text: str) -> None:
        await self.queue.put(OutputEvent(session_id=session_id, kind=EventKind.CHUNK, text=text))

    async def end_turn(self, session_id: str) -> None:
        await self.queue.put(OutputEvent(session_id=session_id, kind=EventKind.END_OF_TURN))

    async def title_updated(self, session_id: str, title: str, tagline: str) -> None:
        await self.queue.put(
            OutputEvent(session_id=session_id, kind=EventKind.TITLE, text=title, tagline=tagline)
        )

    def drain(self) -> list[OutputEvent]:
        """Return and remove every event currently queued."""
        events: list[OutputEvent] = []
        while not self.queue.empty():
            events.append(self.queue.get_nowait())
        return events
