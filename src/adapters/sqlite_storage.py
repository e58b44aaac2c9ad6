"""SQLite persistence adapter.

Implements the core PersistencePort using a simple SQLite database. Each
operation opens a short-lived connection and runs in a worker thread so the
event loop never blocks on disk I/O.
"""

from __future__ import annotations

import asyncio
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from core.errors import PersistenceError
from core.models import MessageDraft, StoredMessage, UserProfile, utcnow


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class SQLitePersistence:
    """Thin SQLite wrapper that satisfies the PersistencePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(self._db_path)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Cannot open database: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        except sqlite3.Error as exc:
            raise PersistenceError(str(exc)) from exc
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - users: display profile plus last known status
        - friendships: accepted friendships, one row per direction
        - blocks: directed blocks (user_id has blocked blocked_id)
        - messages: two-party chat messages
        """

        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    username TEXT NOT NULL UNIQUE,
                    first_name TEXT NOT NULL DEFAULT '',
                    last_name TEXT NOT NULL DEFAULT '',
                    avatar TEXT NOT NULL DEFAULT '',
                    status TEXT NOT NULL DEFAULT 'offline',
                    last_seen TIMESTAMP
                )
                """
            )
            # Friendships are stored symmetrically so a friend lookup is a
            # single indexed scan on user_id.
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS friendships (
                    user_id TEXT NOT NULL,
                    friend_id TEXT NOT NULL,
                    PRIMARY KEY (user_id, friend_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS blocks (
                    user_id TEXT NOT NULL,
                    blocked_id TEXT NOT NULL,
                    PRIMARY KEY (user_id, blocked_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    sender_id TEXT NOT NULL,
                    receiver_id TEXT NOT NULL,
                    content TEXT NOT NULL,
                    message_type TEXT NOT NULL DEFAULT 'text',
                    reply_to_id TEXT,
                    is_read INTEGER NOT NULL DEFAULT 0,
                    read_at TIMESTAMP,
                    created_at TIMESTAMP NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_messages_pair ON messages (sender_id, receiver_id)"
            )

    # -- administrative helpers (CLI) ----------------------------------

    def add_user(
        self,
        username: str,
        first_name: str = "",
        last_name: str = "",
        avatar: str = "",
        user_id: Optional[str] = None,
    ) -> str:
        """Insert a user and return its id."""

        user_id = user_id or uuid.uuid4().hex
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users (id, username, first_name, last_name, avatar)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, username, first_name, last_name, avatar),
            )
        return user_id

    def add_friendship(self, first_id: str, second_id: str) -> None:
        with self._connect() as conn:
            conn.executemany(
                "INSERT OR IGNORE INTO friendships (user_id, friend_id) VALUES (?, ?)",
                [(first_id, second_id), (second_id, first_id)],
            )

    def add_block(self, user_id: str, blocked_id: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO blocks (user_id, blocked_id) VALUES (?, ?)",
                (user_id, blocked_id),
            )

    def resolve_user_id(self, id_or_username: str) -> Optional[str]:
        """Return a user id given either the id or the username."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT id FROM users WHERE id = ? OR username = ?",
                (id_or_username, id_or_username),
            ).fetchone()
        return row["id"] if row else None

    # -- synchronous implementations -----------------------------------

    def _find_user(self, user_id: str) -> Optional[UserProfile]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return UserProfile(
            user_id=row["id"],
            username=row["username"],
            first_name=row["first_name"],
            last_name=row["last_name"],
            avatar=row["avatar"],
            status=row["status"],
            last_seen=_parse_ts(row["last_seen"]),
        )

    def _save_message(self, draft: MessageDraft) -> StoredMessage:
        message = StoredMessage(
            id=uuid.uuid4().hex,
            sender_id=draft.sender_id,
            receiver_id=draft.receiver_id,
            content=draft.content,
            message_type=draft.message_type,
            reply_to_id=draft.reply_to_id,
            created_at=utcnow(),
        )
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO messages (
                    id,
                    sender_id,
                    receiver_id,
                    content,
                    message_type,
                    reply_to_id,
                    created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message.id,
                    message.sender_id,
                    message.receiver_id,
                    message.content,
                    message.message_type,
                    message.reply_to_id,
                    message.created_at.isoformat(),
                ),
            )
        return message

    def _find_message(self, message_id: str) -> Optional[StoredMessage]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM messages WHERE id = ?", (message_id,)).fetchone()
        if row is None:
            return None
        return StoredMessage(
            id=row["id"],
            sender_id=row["sender_id"],
            receiver_id=row["receiver_id"],
            content=row["content"],
            message_type=row["message_type"],
            reply_to_id=row["reply_to_id"],
            is_read=bool(row["is_read"]),
            read_at=_parse_ts(row["read_at"]),
            created_at=_parse_ts(row["created_at"]),
        )

    def _mark_message_read(self, message_id: str, read_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE messages SET is_read = 1, read_at = ? WHERE id = ?",
                (read_at.isoformat(), message_id),
            )

    def _get_friend_ids(self, user_id: str) -> set[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT friend_id FROM friendships WHERE user_id = ?", (user_id,)
            ).fetchall()
        return {row["friend_id"] for row in rows}

    def _get_blocked_ids(self, user_id: str) -> set[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT blocked_id FROM blocks WHERE user_id = ?", (user_id,)
            ).fetchall()
        return {row["blocked_id"] for row in rows}

    def _update_user_status(self, user_id: str, status: str, last_seen: Optional[datetime]) -> None:
        with self._connect() as conn:
            if last_seen is None:
                conn.execute("UPDATE users SET status = ? WHERE id = ?", (status, user_id))
            else:
                conn.execute(
                    "UPDATE users SET status = ?, last_seen = ? WHERE id = ?",
                    (status, last_seen.isoformat(), user_id),
                )

    # -- PersistencePort -----------------------------------------------

    async def find_user(self, user_id: str) -> Optional[UserProfile]:
        return await asyncio.to_thread(self._find_user, user_id)

    async def save_message(self, draft: MessageDraft) -> StoredMessage:
        return await asyncio.to_thread(self._save_message, draft)

    async def find_message(self, message_id: str) -> Optional[StoredMessage]:
        return await asyncio.to_thread(self._find_message, message_id)

    async def mark_message_read(self, message_id: str, read_at: datetime) -> None:
        await asyncio.to_thread(self._mark_message_read, message_id, read_at)

    async def get_friend_ids(self, user_id: str) -> set[str]:
        return await asyncio.to_thread(self._get_friend_ids, user_id)

    async def get_blocked_ids(self, user_id: str) -> set[str]:
        return await asyncio.to_thread(self._get_blocked_ids, user_id)

    async def update_user_status(
        self, user_id: str, status: str, last_seen: Optional[datetime]
    ) -> None:
        await asyncio.to_thread(self._update_user_status, user_id, status, last_seen)
