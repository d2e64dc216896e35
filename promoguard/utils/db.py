from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

import aiosqlite


class DatabaseNotConnected(aiosqlite.Error):
    pass


class Database:
    """Single aiosqlite connection shared by the whole process.

    Every public call takes ``lock`` so at most one logical operation runs at
    a time. Use :meth:`transaction` for work spanning several statements.
    """

    def __init__(self, path: str) -> None:
        self._path = path
        self._conn: aiosqlite.Connection | None = None
        self.lock = asyncio.Lock()

    async def connect(self) -> None:
        if self._conn is None:
            if self._path != ":memory:":
                Path(self._path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = await aiosqlite.connect(self._path)
            await self._conn.execute("PRAGMA journal_mode = WAL;")
            await self._conn.commit()

    async def init_schema(self) -> None:
        await self.exec(
            """
            CREATE TABLE IF NOT EXISTS ad_history (
                id                INTEGER PRIMARY KEY AUTOINCREMENT,
                invite_code       TEXT    NOT NULL,
                owner_guild_id    TEXT    NOT NULL,
                posting_guild_id  TEXT,
                channel_id        TEXT    NOT NULL,
                message_id        TEXT    NOT NULL,
                author_id         TEXT    NOT NULL,
                timestamp         INTEGER NOT NULL,
                soft_deleted      INTEGER NOT NULL DEFAULT 0,
                UNIQUE (message_id, invite_code)
            );

            CREATE INDEX IF NOT EXISTS idx_ad_history_code
                ON ad_history (channel_id, invite_code);

            CREATE INDEX IF NOT EXISTS idx_ad_history_guild
                ON ad_history (channel_id, owner_guild_id);

            CREATE INDEX IF NOT EXISTS idx_ad_history_author
                ON ad_history (posting_guild_id, author_id);
            """
        )

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise DatabaseNotConnected("Database is not connected")
        return self._conn

    async def exec(self, query: str, *params) -> int:
        """Run one statement (or a script when no params) and commit. Returns rowcount."""
        async with self.lock:
            if not params:
                await self.connection.executescript(query)
                await self.connection.commit()
                return 0
            cursor = await self.connection.execute(query, params)
            await self.connection.commit()
            return cursor.rowcount

    async def fetchone(self, query: str, *params):
        async with self.lock:
            async with self.connection.execute(query, params) as cursor:
                return await cursor.fetchone()

    async def fetchall(self, query: str, *params):
        async with self.lock:
            async with self.connection.execute(query, params) as cursor:
                return await cursor.fetchall()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        async with self.lock:
            conn = self.connection
            try:
                yield conn
            except BaseException:
                await conn.rollback()
                raise
            else:
                await conn.commit()
