"""Sink that prints streamed text to a terminal."""

from __future__ import annotations

import sys
from typing import TextIO

from travel_chat.output.base import OutputSink


class ConsoleSink(OutputSink):
    def __init__(self, stream: TextIO | None = None):
        self._stream = stream or sys.stdout

    async def send_chunk(self, session_id: str, text: str) -> None:
        self._stream.write(text)
        self._stream.flush()

    async def end_turn(self, session_id: str) -> None:
        self._stream.write("\n")
        self._stream.flush()

    async def title_updated(self, session_id: str, title: str, tagline: str) -> None:
        self._stream.write(f"[{title} - {tagline}]\n")
        self._stream.flush()
