"""CRUD over chat session metadata."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from travel_chat.storage.database import Database
from travel_chat.storage.models import ChatSession


class SessionRepository:
    def __init__(self, db: Database):
        self._db = db

    async def insert(self, session_id: str, owner_id: Optional[str], saved: bool) -> ChatSession:
        async with self._db.transaction() as conn:
            await conn.execute(
                "INSERT INTO chat_sessions (id, owner_id, saved) VALUES (?, ?, ?)",
                (session_id, owner_id, int(saved)),
            )
        return await self.get(session_id)  # type: ignore[return-value]

    async def insert_if_missing(self, session_id: str, owner_id: Optional[str]) -> bool:
        """Create a temporary session under a caller-chosen ID. Returns True if created."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """INSERT INTO chat_sessions (id, owner_id, saved) VALUES (?, ?, 0)
                   ON CONFLICT(id) DO NOTHING""",
                (session_id, owner_id),
            )
        return cursor.rowcount == 1

    async def get(self, session_id: str) -> ChatSession | None:
        cursor = await self._db.conn.execute(
            "SELECT * FROM chat_sessions WHERE id = ?", (session_id,)
        )
        row = await cursor.fetchone()
        return self._row_to_session(row) if row else None

    async def mark_saved_if_temporary(self, session_id: str) -> bool:
        """Flip a temporary session to saved in one statement. Returns False if already saved."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute(
                """UPDATE chat_sessions
                   SET saved = 1, updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
                   WHERE id = ? AND saved = 0""",
                (session_id,),
            )
        return cursor.rowcount == 1

    async def toggle_saved(self, session_id: str) -> None:
        async with self._db.transaction() as conn:
            await conn.execute(
                """UPDATE chat_sessions
                   SET saved = 1 - saved, updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
                   WHERE id = ?""",
                (session_id,),
            )

    async def update_title(
        self, session_id: str, title: Optional[str], tagline: Optional[str]
    ) -> None:
        """Update whichever of title/tagline is not None."""
        async with self._db.transaction() as conn:
            await conn.execute(
                """UPDATE chat_sessions
                   SET title = COALESCE(?, title),
                       tagline = COALESCE(?, tagline),
                       updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
                   WHERE id = ?""",
                (title, tagline, session_id),
            )

    async def list_for_owner(self, owner_id: str, saved: Optional[bool] = None) -> list[ChatSession]:
        """List an owner's sessions, newest first, optionally filtered by saved flag."""
        if saved is None:
            cursor = await self._db.conn.execute(
                "SELECT * FROM chat_sessions WHERE owner_id = ? ORDER BY created_at DESC",
                (owner_id,),
            )
        else:
            cursor = await self._db.conn.execute(
                """SELECT * FROM chat_sessions WHERE owner_id = ? AND saved = ?
                   ORDER BY created_at DESC""",
                (owner_id, int(saved)),
            )
        rows = await cursor.fetchall()
        return [self._row_to_session(row) for row in rows]

    @staticmethod
    def _row_to_session(row) -> ChatSession:
        return ChatSession(
            id=row["id"],
            owner_id=row["owner_id"],
            saved=bool(row["saved"]),
            title=row["title"],
            tagline=row["tagline"],
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )
