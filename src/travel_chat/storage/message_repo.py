"""Append-only, per-session message log."""

from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime

from travel_chat.log import get_logger
from travel_chat.storage.database import Database
from travel_chat.storage.models import MessageRecord, ToolCallRequest

logger = get_logger(__name__)

_INSERT_SQL = """INSERT INTO messages (session_id, role, content, tool_calls_json, tool_call_id)
                 VALUES (?, ?, ?, ?, ?)"""
_TOUCH_SESSION_SQL = """UPDATE chat_sessions
                        SET updated_at = strftime('%Y-%m-%dT%H:%M:%f','now')
                        WHERE id = ?"""


def _row_params(session_id: str, message: MessageRecord) -> tuple:
    return (
        session_id,
        message.role,
        message.content,
        message.tool_calls_json(),
        message.tool_call_id,
    )


class MessageStore:
    """Durable message history, the only source of truth for conversation state.

    Messages are never updated in place. Rows are read back in insertion order,
    which is also creation-time order within a session.
    """

    def __init__(self, db: Database):
        self._db = db

    async def append(self, message: MessageRecord) -> MessageRecord:
        """Persist one message and return it with its row ID assigned."""
        async with self._db.transaction() as conn:
            cursor = await conn.execute(_INSERT_SQL, _row_params(message.session_id, message))
            await conn.execute(_TOUCH_SESSION_SQL, (message.session_id,))
        logger.debug(
            "message_appended",
            session_id=message.session_id,
            role=message.role,
            message_id=cursor.lastrowid,
        )
        return replace(message, id=cursor.lastrowid)

    async def append_round(self, session_id: str, messages: list[MessageRecord]) -> None:
        """Persist an assistant message and its tool results in one transaction.

        Either every row lands or none does.
        """
        async with self._db.transaction() as conn:
            await conn.executemany(_INSERT_SQL, [_row_params(session_id, m) for m in messages])
            await conn.execute(_TOUCH_SESSION_SQL, (session_id,))
        logger.debug("round_appended", session_id=session_id, messages=len(messages))

    async def list_by_session(self, session_id: str) -> list[MessageRecord]:
        """Get the full ordered history of a session."""
        cursor = await self._db.conn.execute(
            "SELECT * FROM messages WHERE session_id = ? ORDER BY id ASC",
            (session_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def count(self, session_id: str) -> int:
        cursor = await self._db.conn.execute(
            "SELECT COUNT(*) FROM messages WHERE session_id = ?", (session_id,)
        )
        row = await cursor.fetchone()
        return row[0] if row else 0

    @staticmethod
    def _row_to_record(row) -> MessageRecord:
        tool_calls = None
        if row["tool_calls_json"]:
            tool_calls = [ToolCallRequest.from_dict(c) for c in json.loads(row["tool_calls_json"])]
        return MessageRecord(
            id=row["id"],
            session_id=row["session_id"],
            role=row["role"],
            content=row["content"],
            tool_calls=tool_calls,
            tool_call_id=row["tool_call_id"],
            timestamp=datetime.fromisoformat(row["created_at"]),
        )
