"""Async Data Access Layer for users, channels, threads, messages and reactions.

Provides ChatDAL with the reads and writes the realtime session and the
summary endpoints need. Compatible with
`utils.database_init.AsyncDatabaseInitializer`.
"""

from __future__ import annotations

import time
import uuid
from typing import List, Optional, Tuple

import aiosqlite

from models.chat_models import (
    ChannelRecord,
    MessageRecord,
    ReactionRecord,
    ThreadRecord,
    UserRecord,
)
from utils.database_init import AsyncDatabaseInitializer


class ChatDAL:
    """Data access layer for chat records.

    The constructor accepts an `AsyncDatabaseInitializer` (or any object
    exposing an async `connection()` context manager that yields an
    `aiosqlite.Connection` with `aiosqlite.Row` rows).
    """

    def __init__(self, db_initializer: AsyncDatabaseInitializer) -> None:
        self._db = db_initializer

    # ── Users ─────────────────────────────────────────────────────────────

    async def create_user(
        self,
        username: str,
        team: str,
        email: Optional[str] = None,
        avatar: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> UserRecord:
        record = UserRecord(
            id=user_id or uuid.uuid4().hex,
            username=username,
            team=team,
            email=email,
            avatar=avatar,
        )
        async with self._db.connection() as conn:
            await conn.execute(
                "INSERT INTO users (id, username, email, avatar, team) VALUES (?, ?, ?, ?, ?)",
                (record.id, record.username, record.email, record.avatar, record.team),
            )
            await conn.commit()
        return record

    async def get_user(self, user_id: str) -> Optional[UserRecord]:
        """Return the UserRecord for `user_id`, or None if not found."""
        async with self._db.connection() as conn:
            cur = await conn.execute(
                "SELECT id, username, email, avatar, team FROM users WHERE id = ?",
                (user_id,),
            )
            row = await cur.fetchone()
        if row is None:
            return None
        return UserRecord(
            id=row["id"],
            username=row["username"],
            team=row["team"],
            email=row["email"],
            avatar=row["avatar"],
        )

    # ── Channels & threads ────────────────────────────────────────────────

    async def create_channel(self, name: str, team: str, channel_id: Optional[str] = None) -> ChannelRecord:
        record = ChannelRecord(id=channel_id or uuid.uuid4().hex, name=name, team=team)
        async with self._db.connection() as conn:
            await conn.execute(
                "INSERT INTO channels (id, name, team) VALUES (?, ?, ?)",
                (record.id, record.name, record.team),
            )
            await conn.commit()
        return record

    async def get_channel(self, channel_id: str) -> Optional[ChannelRecord]:
        async with self._db.connection() as conn:
            cur = await conn.execute("SELECT id, name, team FROM channels WHERE id = ?", (channel_id,))
            row = await cur.fetchone()
        return ChannelRecord(id=row["id"], name=row["name"], team=row["team"]) if row else None

    async def get_team_channel(self, channel_id: str, team: str) -> Optional[ChannelRecord]:
        """Return the channel only when it belongs to `team`."""
        channel = await self.get_channel(channel_id)
        if channel is None or channel.team != team:
            return None
        return channel

    async def create_thread(self, channel_id: str, title: Optional[str] = None) -> ThreadRecord:
        now = time.time()
        record = ThreadRecord(
            id=uuid.uuid4().hex,
            channel_id=channel_id,
            title=title,
            created_at=now,
            updated_at=now,
        )
        async with self._db.connection() as conn:
            await conn.execute(
                "INSERT INTO threads (id, channel_id, title, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
                (record.id, record.channel_id, record.title, record.created_at, record.updated_at),
            )
            await conn.commit()
        return record

    async def get_thread(self, thread_id: str) -> Optional[ThreadRecord]:
        async with self._db.connection() as conn:
            cur = await conn.execute(
                "SELECT id, channel_id, title, created_at, updated_at FROM threads WHERE id = ?",
                (thread_id,),
            )
            row = await cur.fetchone()
        if row is None:
            return None
        return ThreadRecord(
            id=row["id"],
            channel_id=row["channel_id"],
            title=row["title"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # ── Messages ──────────────────────────────────────────────────────────

    async def create_message(
        self,
        content: str,
        user_id: str,
        channel_id: str,
        thread_id: Optional[str] = None,
    ) -> MessageRecord:
        """Insert a message and, for thread replies, bump the thread's activity time.

        Both writes share one transaction.

        Returns:
            The stored message with its author fields and an empty reaction list.
        """
        now = time.time()
        message_id = uuid.uuid4().hex
        async with self._db.connection() as conn:
            await conn.execute(
                "INSERT INTO messages (id, content, user_id, channel_id, thread_id, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (message_id, content, user_id, channel_id, thread_id, now),
            )
            if thread_id:
                await conn.execute("UPDATE threads SET updated_at = ? WHERE id = ?", (now, thread_id))
            await conn.commit()
            cur = await conn.execute("SELECT id, username, avatar FROM users WHERE id = ?", (user_id,))
            author = await cur.fetchone()
        return MessageRecord(
            id=message_id,
            content=content,
            user_id=user_id,
            channel_id=channel_id,
            thread_id=thread_id,
            created_at=now,
            author={"id": author["id"], "username": author["username"], "avatar": author["avatar"]}
            if author
            else {"id": user_id},
        )

    async def get_message(self, message_id: str) -> Optional[MessageRecord]:
        async with self._db.connection() as conn:
            cur = await conn.execute(
                "SELECT m.id, m.content, m.user_id, m.channel_id, m.thread_id, m.created_at, "
                "u.username, u.avatar FROM messages m LEFT JOIN users u ON u.id = m.user_id "
                "WHERE m.id = ?",
                (message_id,),
            )
            row = await cur.fetchone()
            if row is None:
                return None
            reactions = await self._reactions_for(conn, [message_id])
        message = self._row_to_message(row)
        message.reactions = reactions.get(message_id, [])
        return message

    async def list_thread_messages(self, thread_id: str) -> List[MessageRecord]:
        """Return the messages of a thread oldest first, with reactions."""
        async with self._db.connection() as conn:
            cur = await conn.execute(
                "SELECT m.id, m.content, m.user_id, m.channel_id, m.thread_id, m.created_at, "
                "u.username, u.avatar FROM messages m LEFT JOIN users u ON u.id = m.user_id "
                "WHERE m.thread_id = ? ORDER BY m.created_at ASC, m.rowid ASC",
                (thread_id,),
            )
            rows = await cur.fetchall()
            messages = [self._row_to_message(row) for row in rows]
            reactions = await self._reactions_for(conn, [m.id for m in messages])
        for message in messages:
            message.reactions = reactions.get(message.id, [])
        return messages

    # ── Reactions ─────────────────────────────────────────────────────────

    async def find_reaction(self, user_id: str, message_id: str, emoji: str) -> Optional[ReactionRecord]:
        async with self._db.connection() as conn:
            cur = await conn.execute(
                "SELECT id, emoji, user_id, message_id, created_at FROM reactions "
                "WHERE user_id = ? AND message_id = ? AND emoji = ?",
                (user_id, message_id, emoji),
            )
            row = await cur.fetchone()
        return self._row_to_reaction(row) if row else None

    async def toggle_reaction(self, user_id: str, message_id: str, emoji: str) -> Tuple[bool, ReactionRecord]:
        """Delete the (user, message, emoji) reaction if present, otherwise create it.

        Lookup and write run inside one immediate transaction so two toggles
        racing on the same triple serialize on the database lock.

        Returns:
            `(True, created)` when the reaction was added, `(False, removed)` when removed.
        """
        async with self._db.connection() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                cur = await conn.execute(
                    "SELECT id, emoji, user_id, message_id, created_at FROM reactions "
                    "WHERE user_id = ? AND message_id = ? AND emoji = ?",
                    (user_id, message_id, emoji),
                )
                row = await cur.fetchone()
                if row is not None:
                    existing = self._row_to_reaction(row)
                    await conn.execute("DELETE FROM reactions WHERE id = ?", (existing.id,))
                    await conn.commit()
                    return False, existing

                created = ReactionRecord(
                    id=uuid.uuid4().hex,
                    emoji=emoji,
                    user_id=user_id,
                    message_id=message_id,
                    created_at=time.time(),
                )
                await conn.execute(
                    "INSERT INTO reactions (id, emoji, user_id, message_id, created_at) VALUES (?, ?, ?, ?, ?)",
                    (created.id, created.emoji, created.user_id, created.message_id, created.created_at),
                )
                cur = await conn.execute("SELECT username FROM users WHERE id = ?", (user_id,))
                user_row = await cur.fetchone()
                await conn.commit()
            except BaseException:
                await conn.rollback()
                raise
        created.username = user_row["username"] if user_row else None
        return True, created

    # ── Row mapping ───────────────────────────────────────────────────────

    async def _reactions_for(self, conn: aiosqlite.Connection, message_ids: List[str]) -> dict:
        if not message_ids:
            return {}
        placeholders = ", ".join("?" for _ in message_ids)
        cur = await conn.execute(
            f"SELECT r.id, r.emoji, r.user_id, r.message_id, r.created_at, u.username "
            f"FROM reactions r LEFT JOIN users u ON u.id = r.user_id "
            f"WHERE r.message_id IN ({placeholders}) ORDER BY r.created_at ASC",
            tuple(message_ids),
        )
        grouped: dict = {}
        for row in await cur.fetchall():
            reaction = self._row_to_reaction(row)
            reaction.username = row["username"]
            grouped.setdefault(reaction.message_id, []).append(reaction)
        return grouped

    @staticmethod
    def _row_to_message(row: aiosqlite.Row) -> MessageRecord:
        return MessageRecord(
            id=row["id"],
            content=row["content"],
            user_id=row["user_id"],
            channel_id=row["channel_id"],
            thread_id=row["thread_id"],
            created_at=row["created_at"],
            author={"id": row["user_id"], "username": row["username"], "avatar": row["avatar"]},
        )

    @staticmethod
    def _row_to_reaction(row: aiosqlite.Row) -> ReactionRecord:
        return ReactionRecord(
            id=row["id"],
            emoji=row["emoji"],
            user_id=row["user_id"],
            message_id=row["message_id"],
            created_at=row["created_at"],
        )
