"""Async Data Access Layer for the ai_summaries table."""

from __future__ import annotations

import time
import uuid
from typing import List, Optional

import aiosqlite

from models.chat_models import SummaryRecord
from utils.database_init import AsyncDatabaseInitializer


class SummaryDAL:
    """Store and read thread summaries. Rows are only ever added."""

    _COLUMNS = "id, thread_id, content, created_at"

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer

    @staticmethod
    def new_record(thread_id: str, content: str) -> SummaryRecord:
        return SummaryRecord(
            id=uuid.uuid4().hex,
            thread_id=thread_id,
            content=content,
            created_at=time.time(),
        )

    async def create_summary(self, thread_id: str, content: str) -> SummaryRecord:
        """Insert a new summary row for `thread_id` and return it."""
        record = self.new_record(thread_id, content)
        async with self._db.connection() as conn:
            await self.insert(conn, record)
            await conn.commit()
        return record

    async def insert(self, conn: aiosqlite.Connection, record: SummaryRecord) -> None:
        """Insert `record` on `conn` without committing; the caller owns the transaction."""
        await conn.execute(
            f"INSERT INTO ai_summaries ({self._COLUMNS}) VALUES (?, ?, ?, ?)",
            (record.id, record.thread_id, record.content, record.created_at),
        )

    async def list_for_thread(self, thread_id: str) -> List[SummaryRecord]:
        """Return every summary for the thread, newest first."""
        async with self._db.connection() as conn:
            cur = await conn.execute(
                f"SELECT {self._COLUMNS} FROM ai_summaries WHERE thread_id = ? "
                "ORDER BY created_at DESC, rowid DESC",
                (thread_id,),
            )
            rows = await cur.fetchall()
        return [self._row_to_record(row) for row in rows]

    async def latest_for_thread(self, thread_id: str) -> Optional[SummaryRecord]:
        async with self._db.connection() as conn:
            cur = await conn.execute(
                f"SELECT {self._COLUMNS} FROM ai_summaries WHERE thread_id = ? "
                "ORDER BY created_at DESC, rowid DESC LIMIT 1",
                (thread_id,),
            )
            row = await cur.fetchone()
        return self._row_to_record(row) if row else None

    @staticmethod
    def _row_to_record(row) -> SummaryRecord:
        return SummaryRecord(
            id=row["id"],
            thread_id=row["thread_id"],
            content=row["content"],
            created_at=row["created_at"],
        )
