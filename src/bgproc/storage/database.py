"""SQLite history of finished background processes."""

from __future__ import annotations

import json
import logging
from pathlib import Path

import aiosqlite

from bgproc.processes.models import ProcessSnapshot

logger = logging.getLogger(__name__)

_db: aiosqlite.Connection | None = None


async def init_db(db_path: str) -> None:
    """Initialize database and create tables."""
    global _db
    resolved = Path(db_path).expanduser().resolve()
    resolved.parent.mkdir(parents=True, exist_ok=True)

    _db = await aiosqlite.connect(str(resolved))
    _db.row_factory = aiosqlite.Row
    await _db.execute("PRAGMA journal_mode = WAL")

    await _db.execute("""
        CREATE TABLE IF NOT EXISTS processes (
            row_id INTEGER PRIMARY KEY AUTOINCREMENT,
            id TEXT NOT NULL,
            name TEXT NOT NULL,
            command TEXT NOT NULL,
            session_id TEXT NOT NULL,
            status TEXT NOT NULL
                CHECK(status IN ('completed', 'failed', 'cancelled')),
            exit_code INTEGER,
            error TEXT DEFAULT '',
            tags TEXT DEFAULT '[]',
            started_at TEXT DEFAULT '',
            completed_at TEXT DEFAULT '',
            duration_ms INTEGER,
            recorded_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        )
    """)
    await _db.execute("CREATE INDEX IF NOT EXISTS idx_processes_session ON processes(session_id)")
    await _db.commit()
    logger.info("Database initialized: %s", resolved)


async def get_db() -> aiosqlite.Connection:
    """Get the database connection."""
    if _db is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _db


async def close_db() -> None:
    """Close the database connection."""
    global _db
    if _db is not None:
        await _db.close()
        _db = None
        logger.info("Database closed")


async def save_process(snapshot: ProcessSnapshot) -> None:
    """Append a finished process to the history. Failures are logged only."""
    data = snapshot.to_dict()
    try:
        db = await get_db()
        await db.execute(
            """INSERT INTO processes
                   (id, name, command, session_id, status, exit_code, error,
                    tags, started_at, completed_at, duration_ms)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                data["id"],
                data["name"],
                data["command"],
                data["session_id"],
                data["status"],
                data["exit_code"],
                data["error"],
                json.dumps(data["tags"]),
                data["started_at"],
                data["completed_at"],
                snapshot.duration_ms,
            ),
        )
        await db.commit()
    except Exception:
        logger.exception("Failed to save process history")


async def get_recent_processes(limit: int = 10, session_id: str | None = None) -> list[dict]:
    """Get recently finished processes, newest first."""
    db = await get_db()
    query = (
        "SELECT id, name, command, session_id, status, exit_code, error, tags, duration_ms, completed_at "
        "FROM processes"
    )
    params: tuple = ()
    if session_id is not None:
        query += " WHERE session_id = ?"
        params = (session_id,)
    query += " ORDER BY row_id DESC LIMIT ?"
    cursor = await db.execute(query, (*params, limit))
    rows = await cursor.fetchall()
    result = []
    for row in rows:
        item = dict(row)
        item["tags"] = json.loads(item["tags"] or "[]")
        result.append(item)
    return result
