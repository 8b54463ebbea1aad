"""Session lifecycle: creation, saved/temporary flag, and title metadata."""

from __future__ import annotations

import uuid
from typing import Optional

from travel_chat.errors import SessionNotFoundError, SessionStateError
from travel_chat.log import get_logger
from travel_chat.storage.models import ChatSession
from travel_chat.storage.session_repo import SessionRepository

logger = get_logger(__name__)


class SessionManager:
    """Manages chat sessions independently of the turn loop.

    Sessions start temporary unless created through the saved entry point and
    are only ever flipped by explicit user actions. Deletion is left to admin
    tooling outside this package.
    """

    def __init__(self, session_repo: SessionRepository):
        self._repo = session_repo

    async def create(self, owner_id: Optional[str] = None, saved: bool = False) -> ChatSession:
        session_id = uuid.uuid4().hex
        session = await self._repo.insert(session_id, owner_id, saved)
        logger.info("session_created", session_id=session_id, owner_id=owner_id, saved=saved)
        return session

    async def ensure(
        self, session_id: str, owner_id: Optional[str] = None
    ) -> tuple[ChatSession, bool]:
        """Get a session, creating it as temporary on first contact.

        Returns the session and whether it was created by this call.
        """
        created = await self._repo.insert_if_missing(session_id, owner_id)
        if created:
            logger.info("session_created", session_id=session_id, owner_id=owner_id, saved=False)
        return await self.get(session_id), created

    async def get(self, session_id: str) -> ChatSession:
        session = await self._repo.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def promote(self, session_id: str) -> ChatSession:
        """Turn a temporary session into a saved one."""
        await self.get(session_id)
        if not await self._repo.mark_saved_if_temporary(session_id):
            raise SessionStateError(f"Session is already saved: {session_id}")
        logger.info("session_promoted", session_id=session_id)
        return await self.get(session_id)

    async def toggle_saved(self, session_id: str) -> ChatSession:
        await self.get(session_id)
        await self._repo.toggle_saved(session_id)
        session = await self.get(session_id)
        logger.info("session_save_toggled", session_id=session_id, saved=session.saved)
        return session

    async def rename(
        self,
        session_id: str,
        title: Optional[str] = None,
        tagline: Optional[str] = None,
    ) -> ChatSession:
        if title is None and tagline is None:
            raise ValueError("Title or tagline must be provided")
        await self.get(session_id)
        await self._repo.update_title(session_id, title, tagline)
        logger.info("session_renamed", session_id=session_id, title=title, tagline=tagline)
        return await self.get(session_id)

    async def list_for_owner(
        self,
        owner_id: str,
        *,
        include_temporary: bool = False,
        saved: Optional[bool] = None,
    ) -> list[ChatSession]:
        """List an owner's sessions, newest first.

        An explicit ``saved`` filter wins; otherwise only saved sessions are
        returned unless ``include_temporary`` is set.
        """
        if saved is None and not include_temporary:
            saved = True
        return await self._repo.list_for_owner(owner_id, saved=saved)
