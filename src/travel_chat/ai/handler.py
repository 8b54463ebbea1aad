"""Chat service: receives user messages, serializes turns per session, runs the loop."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from travel_chat.ai.client import ModelClient
from travel_chat.ai.title import generate_session_title
from travel_chat.ai.tool_runner import TurnOutcome, TurnRunner
from travel_chat.config import AIConfig
from travel_chat.core.session import SessionManager
from travel_chat.errors import TurnError
from travel_chat.log import get_logger
from travel_chat.output.base import OutputSink
from travel_chat.storage.message_repo import MessageStore
from travel_chat.storage.models import MessageRecord

logger = get_logger(__name__)


class ChatService:
    """Handles the full flow: message -> session -> history -> model -> tools -> response.

    Turns on the same session run one at a time in arrival order; turns on
    different sessions run concurrently and share nothing but the store.
    """

    def __init__(
        self,
        runner: TurnRunner,
        session_manager: SessionManager,
        message_store: MessageStore,
        ai_client: ModelClient,
        ai_config: AIConfig,
    ):
        self._runner = runner
        self._session_manager = session_manager
        self._store = message_store
        self._ai_client = ai_client
        self._ai_config = ai_config
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_holders: dict[str, int] = {}

    @property
    def sessions(self) -> SessionManager:
        return self._session_manager

    async def start_or_continue_turn(
        self,
        session_id: str,
        user_text: Optional[str],
        sink: OutputSink,
        *,
        owner_id: Optional[str] = None,
        cancel_event: Optional[asyncio.Event] = None,
        update_title: bool = False,
    ) -> TurnOutcome:
        """Process one user message (or, for a new session, fetch the greeting).

        Raises ``TurnError`` subclasses when the turn cannot finish; history
        persisted up to that point remains valid.
        """
        if user_text is not None:
            user_text = user_text.strip()
            if not user_text:
                raise ValueError("Message text must not be empty")

        async with self._session_lock(session_id):
            _, created = await self._session_manager.ensure(session_id, owner_id)
            if update_title and user_text:
                await self._update_title(session_id, user_text, sink)

            try:
                return await self._runner.run(session_id, user_text, sink, cancel_event)
            except TurnError as e:
                logger.error(
                    "turn_failed",
                    session_id=session_id,
                    error_type=type(e).__name__,
                    error=str(e),
                    new_session=created,
                )
                raise

    async def get_history(self, session_id: str) -> list[MessageRecord]:
        await self._session_manager.get(session_id)
        return await self._store.list_by_session(session_id)

    async def _update_title(self, session_id: str, user_text: str, sink: OutputSink) -> None:
        title = await generate_session_title(
            self._ai_client,
            user_text,
            model=self._ai_config.title_model or self._ai_config.model,
        )
        await self._session_manager.rename(session_id, title=title.title, tagline=title.tagline)
        try:
            await sink.title_updated(session_id, title.title, title.tagline)
        except Exception as e:
            logger.warning("output_delivery_failed", session_id=session_id, error=str(e))

    @asynccontextmanager
    async def _session_lock(self, session_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        self._lock_holders[session_id] = self._lock_holders.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_holders[session_id] -= 1
            if self._lock_holders[session_id] == 0:
                del self._lock_holders[session_id]
                del self._locks[session_id]
