"""Offline ledger: a durable local buffer of session states.

A single SQLite file (aiosqlite) keyed by session id. ``store`` is an upsert,
so the last write for a session wins. Every write bumps a per-row revision;
the background sync deletes an entry only at the revision it uploaded, so a
newer tick buffered mid-upload is never lost.

Usage:
    ledger = OfflineLedger()  # COREMINE_OFFLINE_LEDGER_PATH
    await ledger.open()
    await ledger.store(session)
    async for session in ledger.get_all():
        ...
    await ledger.close()
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass

import aiosqlite

from coremine.config import get_settings
from coremine.errors import StorageError
from coremine.mining.state import LocalSession

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS buffered_sessions (
    id          TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    payload     TEXT NOT NULL,
    revision    INTEGER NOT NULL DEFAULT 1,
    updated_at  REAL NOT NULL
);
"""

DEFAULT_PAGE_SIZE = 100


@dataclass(frozen=True)
class LedgerEntry:
    session: LocalSession
    revision: int


class OfflineLedger:
    """Durable key-value buffer of LocalSession by id."""

    def __init__(self, path: str | None = None) -> None:
        self.path = path or get_settings().offline_ledger_path
        self._db: aiosqlite.Connection | None = None

    async def open(self) -> None:
        """Open the file and create the table if needed."""
        if self._db is not None:
            return
        try:
            self._db = await aiosqlite.connect(self.path)
            await self._db.execute("PRAGMA journal_mode=WAL")
            await self._db.executescript(SCHEMA_SQL)
            await self._db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"Could not open offline ledger at {self.path}") from exc
        logger.info("Offline ledger opened: %s", self.path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Offline ledger closed")

    async def __aenter__(self) -> OfflineLedger:
        await self.open()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    def _conn(self) -> aiosqlite.Connection:
        if self._db is None:
            msg = "Offline ledger is not open"
            raise StorageError(msg)
        return self._db

    async def store(self, session: LocalSession) -> None:
        """Upsert by session id (last write wins)."""
        db = self._conn()
        try:
            await db.execute(
                """
                INSERT INTO buffered_sessions (id, user_id, payload, revision, updated_at)
                VALUES (?, ?, ?, 1, ?)
                ON CONFLICT(id) DO UPDATE SET
                    user_id = excluded.user_id,
                    payload = excluded.payload,
                    revision = buffered_sessions.revision + 1,
                    updated_at = excluded.updated_at
                """,
                (session.id, session.user_id, session.to_json(), time.time()),
            )
            await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError("Could not write to offline ledger") from exc

    async def get(self, session_id: str) -> LocalSession | None:
        db = self._conn()
        async with db.execute("SELECT payload FROM buffered_sessions WHERE id = ?", (session_id,)) as cursor:
            row = await cursor.fetchone()
        return LocalSession.from_json(row[0]) if row else None

    async def entries(self, page_size: int = DEFAULT_PAGE_SIZE) -> AsyncIterator[LedgerEntry]:
        """Iterate buffered entries in id order, one page at a time.

        Keyset pagination: deleting already-yielded rows while iterating is
        safe, and a fresh call always restarts from the beginning.
        """
        db = self._conn()
        last_id = ""
        while True:
            async with db.execute(
                "SELECT id, payload, revision FROM buffered_sessions WHERE id > ? ORDER BY id LIMIT ?",
                (last_id, page_size),
            ) as cursor:
                rows = await cursor.fetchall()
            for session_id, payload, revision in rows:
                last_id = session_id
                yield LedgerEntry(LocalSession.from_json(payload), revision)
            if len(rows) < page_size:
                return

    async def get_all(self, page_size: int = DEFAULT_PAGE_SIZE) -> AsyncIterator[LocalSession]:
        async for entry in self.entries(page_size):
            yield entry.session

    async def delete(self, session_id: str, revision: int | None = None) -> bool:
        """Remove an entry; with ``revision``, only if it has not been rewritten since."""
        db = self._conn()
        try:
            if revision is None:
                cursor = await db.execute("DELETE FROM buffered_sessions WHERE id = ?", (session_id,))
            else:
                cursor = await db.execute(
                    "DELETE FROM buffered_sessions WHERE id = ? AND revision = ?",
                    (session_id, revision),
                )
            await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError("Could not delete from offline ledger") from exc
        return cursor.rowcount == 1

    async def count(self) -> int:
        db = self._conn()
        async with db.execute("SELECT COUNT(*) FROM buffered_sessions") as cursor:
            row = await cursor.fetchone()
        return int(row[0]) if row else 0
