"""Embedded SQLite storage: one row per project."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from contextlib import closing
from pathlib import Path

from storybible.storage.base import Record

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS bibles (
    project_id TEXT PRIMARY KEY,
    body TEXT NOT NULL,
    written_at REAL NOT NULL
)
"""


class SqliteStorage:
    """Adapter over a single SQLite file. Calls run in a worker thread."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(sqlite3.connect(self.db_path)) as conn, conn:
            conn.execute(_SCHEMA)

    @property
    def name(self) -> str:
        return "sqlite"

    def _get(self, key: str) -> Record | None:
        with closing(sqlite3.connect(self.db_path)) as conn:
            row = conn.execute("SELECT body FROM bibles WHERE project_id = ?", (key,)).fetchone()
        return json.loads(row[0]) if row else None

    def _set(self, key: str, record: Record) -> None:
        body = json.dumps(record, ensure_ascii=False)
        with closing(sqlite3.connect(self.db_path)) as conn, conn:
            conn.execute(
                "INSERT INTO bibles (project_id, body, written_at) VALUES (?, ?, ?) "
                "ON CONFLICT(project_id) DO UPDATE SET body = excluded.body, "
                "written_at = excluded.written_at",
                (key, body, time.time()),
            )

    def _delete(self, key: str) -> None:
        with closing(sqlite3.connect(self.db_path)) as conn, conn:
            conn.execute("DELETE FROM bibles WHERE project_id = ?", (key,))

    def _keys(self) -> list[str]:
        with closing(sqlite3.connect(self.db_path)) as conn:
            rows = conn.execute("SELECT project_id FROM bibles ORDER BY rowid").fetchall()
        return [r[0] for r in rows]

    async def get(self, key: str) -> Record | None:
        return await asyncio.to_thread(self._get, key)

    async def set(self, key: str, record: Record) -> None:
        await asyncio.to_thread(self._set, key, record)
        logger.debug("Wrote bible %s to %s", key, self.db_path.name)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete, key)

    async def keys(self) -> list[str]:
        return await asyncio.to_thread(self._keys)
