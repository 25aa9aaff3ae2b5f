"""Persistent store for chat users and pending replies.

Behavioral contract:
- Users are create-if-absent and never updated or deleted here.
- ``pending_replies.reply_token`` is UNIQUE.  A second insert for the same
  token fails atomically and surfaces as :class:`DuplicateDeliveryError`;
  this is the correctness backstop of the dedup guard.
- The connection is opened lazily (or by :meth:`SQLiteStore.initialize`)
  and runs in autocommit mode, so every statement is its own transaction.
  ``timeout`` is the SQLite busy timeout: a locked database fails the
  statement instead of abandoning one that may still commit.
- ``sqlite3`` failures and use after :meth:`SQLiteStore.close` raise
  :class:`PersistenceError`.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sqlite3
from collections.abc import Iterator
from datetime import UTC, datetime
from typing import Protocol

import aiosqlite

from sensorrelay._redact import mask_token
from sensorrelay.exceptions import DuplicateDeliveryError, PersistenceError
from sensorrelay.models.records import PendingReply, UserRecord

_logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    user_id TEXT PRIMARY KEY,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS pending_replies (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    reply_token TEXT NOT NULL UNIQUE,
    user_id TEXT NOT NULL,
    message_type TEXT NOT NULL,
    text TEXT NOT NULL,
    created_at TEXT NOT NULL
);
"""


class Store(Protocol):
    """Structural store interface used by the guard, processor and reporter."""

    async def ensure_user(self, user_id: str) -> bool:
        ...

    async def list_users(self) -> list[UserRecord]:
        ...

    async def create_pending(self, record: PendingReply) -> PendingReply:
        ...

    async def find_pending_by_token(self, reply_token: str) -> PendingReply | None:
        ...

    async def delete_pending(self, record_id: int) -> bool:
        ...


@contextlib.contextmanager
def _sqlite_errors(op: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise PersistenceError(f"{op} failed: {exc}") from exc


class SQLiteStore:
    """SQLite-backed store on top of ``aiosqlite``.

    Prototype-friendly: ``":memory:"`` gives an ephemeral database that
    still enforces the uniqueness constraint.
    """

    def __init__(self, db_path: str = ":memory:", *, timeout: float = 5.0) -> None:
        self.db_path = db_path
        self._timeout = timeout
        self._db: aiosqlite.Connection | None = None
        self._open_lock = asyncio.Lock()
        self._closed = False

    async def initialize(self) -> None:
        """Open the connection and create tables if they don't exist."""
        async with self._open_lock:
            if self._closed:
                raise PersistenceError("store is closed")
            if self._db is not None:
                return
            with _sqlite_errors("initialize"):
                db = await aiosqlite.connect(self.db_path, timeout=self._timeout, isolation_level=None)
                try:
                    db.row_factory = aiosqlite.Row
                    await db.executescript(_SCHEMA)
                except sqlite3.Error:
                    await db.close()
                    raise
            self._db = db
            _logger.debug("SQLite store opened path=%s", self.db_path)

    async def _connection(self) -> aiosqlite.Connection:
        if self._db is None:
            await self.initialize()
        if self._closed or self._db is None:
            raise PersistenceError("store is closed")
        return self._db

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def ensure_user(self, user_id: str) -> bool:
        """Create the user if absent.  Returns ``True`` when newly created."""
        db = await self._connection()
        with _sqlite_errors("ensure_user"):
            async with db.execute(
                "INSERT OR IGNORE INTO users (user_id, created_at) VALUES (?, ?)",
                (user_id, datetime.now(UTC).isoformat()),
            ) as cursor:
                created = cursor.rowcount == 1
        if created:
            _logger.info("New chat user registered user=%s", mask_token(user_id))
        return created

    async def list_users(self) -> list[UserRecord]:
        db = await self._connection()
        with _sqlite_errors("list_users"):
            async with db.execute("SELECT user_id, created_at FROM users ORDER BY rowid") as cursor:
                rows = await cursor.fetchall()
        return [UserRecord(user_id=r["user_id"], created_at=r["created_at"]) for r in rows]

    # ------------------------------------------------------------------
    # Pending replies
    # ------------------------------------------------------------------

    async def create_pending(self, record: PendingReply) -> PendingReply:
        """Insert a pending reply; the UNIQUE token makes this insert-if-absent.

        Raises
        ------
        DuplicateDeliveryError
            If a record with the same reply token already exists.
        """
        db = await self._connection()
        with _sqlite_errors("create_pending"):
            try:
                async with db.execute(
                    """
                    INSERT INTO pending_replies (reply_token, user_id, message_type, text, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (
                        record.reply_token,
                        record.user_id,
                        record.message_type,
                        record.text,
                        record.created_at.isoformat(),
                    ),
                ) as cursor:
                    row_id = cursor.lastrowid
            except sqlite3.IntegrityError as exc:
                raise DuplicateDeliveryError(
                    f"pending reply already exists for token {mask_token(record.reply_token)}",
                    reply_token=record.reply_token,
                ) from exc
        return record.model_copy(update={"id": row_id})

    async def find_pending_by_token(self, reply_token: str) -> PendingReply | None:
        db = await self._connection()
        with _sqlite_errors("find_pending_by_token"):
            async with db.execute(
                "SELECT * FROM pending_replies WHERE reply_token = ?",
                (reply_token,),
            ) as cursor:
                row = await cursor.fetchone()
        return self._deserialize(row) if row else None

    async def delete_pending(self, record_id: int) -> bool:
        """Delete a pending reply.  Returns ``False`` if it was already gone."""
        db = await self._connection()
        with _sqlite_errors("delete_pending"):
            async with db.execute("DELETE FROM pending_replies WHERE id = ?", (record_id,)) as cursor:
                return cursor.rowcount == 1

    async def count_pending(self) -> int:
        db = await self._connection()
        with _sqlite_errors("count_pending"):
            async with db.execute("SELECT COUNT(*) AS cnt FROM pending_replies") as cursor:
                row = await cursor.fetchone()
        return int(row["cnt"]) if row else 0

    @staticmethod
    def _deserialize(row: sqlite3.Row) -> PendingReply:
        return PendingReply(
            id=row["id"],
            reply_token=row["reply_token"],
            user_id=row["user_id"],
            message_type=row["message_type"],
            text=row["text"],
            created_at=row["created_at"],
        )

    async def close(self) -> None:
        """Close the database connection.  Later operations fail."""
        async with self._open_lock:
            self._closed = True
            if self._db is not None:
                await self._db.close()
                self._db = None
