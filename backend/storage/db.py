import json
import logging
from datetime import datetime, timezone
from typing import Optional

import aiosqlite

from config import DB_PATH, RESULT_TEXT_CAP
from models.attack import AttackResult, AttackSession

log = logging.getLogger(__name__)


async def init_db():
    """Create tables if they don't exist."""
    async with aiosqlite.connect(DB_PATH) as db:
        # ── Sessions (one per intruder tab) ──
        await db.execute("""
            CREATE TABLE IF NOT EXISTS intruder_sessions (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                data TEXT NOT NULL DEFAULT '{}',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        await db.execute("""
            CREATE TABLE IF NOT EXISTS intruder_results (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                sequence_id INTEGER NOT NULL,
                payload TEXT DEFAULT '',
                position_index INTEGER DEFAULT -1,
                status_code INTEGER DEFAULT 0,
                body_length INTEGER DEFAULT 0,
                elapsed_ms INTEGER DEFAULT 0,
                full_request TEXT DEFAULT '',
                full_response TEXT DEFAULT '',
                error TEXT DEFAULT '',
                timestamp TEXT NOT NULL
            )
        """)
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_results_session ON intruder_results(session_id)"
        )
        await db.commit()


# ── Sessions ──────────────────────────────────────────────────────


async def save_session(session: AttackSession) -> None:
    """Insert or update a session record. Results are stored separately."""
    data = session.model_dump(mode="json", by_alias=True, exclude={"results"})
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute("""
            INSERT INTO intruder_sessions (id, name, data, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                data = excluded.data,
                updated_at = excluded.updated_at
        """, (
            session.id,
            session.name,
            json.dumps(data),
            session.created_at,
            session.updated_at,
        ))
        await db.commit()


async def get_session(session_id: str) -> Optional[AttackSession]:
    """Load a session with the results of its latest run attached."""
    async with aiosqlite.connect(DB_PATH) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT data FROM intruder_sessions WHERE id = ?", (session_id,)
        )
        row = await cursor.fetchone()
    if not row:
        return None
    session = AttackSession.model_validate(_safe_json(row["data"]))
    session.results = await get_attack_results(session_id)
    return session


async def list_sessions() -> list[dict]:
    """Return session summaries, oldest tab first."""
    async with aiosqlite.connect(DB_PATH) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute("""
            SELECT s.id, s.name, s.created_at, s.updated_at,
                   (SELECT COUNT(*) FROM intruder_results r WHERE r.session_id = s.id) AS result_count
            FROM intruder_sessions s
            ORDER BY s.created_at ASC
        """)
        return [dict(row) for row in await cursor.fetchall()]


async def delete_session(session_id: str) -> None:
    """Delete a session and all its results."""
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute("DELETE FROM intruder_results WHERE session_id = ?", (session_id,))
        await db.execute("DELETE FROM intruder_sessions WHERE id = ?", (session_id,))
        await db.commit()
    log.info("session %s deleted", session_id)


# ── Results ───────────────────────────────────────────────────────


async def save_attack_result(session_id: str, result: AttackResult) -> int:
    """Persist one attack result. Returns the new row ID."""
    async with aiosqlite.connect(DB_PATH) as db:
        cursor = await db.execute("""
            INSERT INTO intruder_results
            (session_id, sequence_id, payload, position_index, status_code, body_length,
             elapsed_ms, full_request, full_response, error, timestamp)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            session_id,
            result.sequence_id,
            result.payload,
            result.position_index,
            result.status_code,
            result.body_length,
            result.elapsed_ms,
            result.full_request[:RESULT_TEXT_CAP],
            result.full_response[:RESULT_TEXT_CAP],
            result.error,
            result.timestamp,
        ))
        await db.commit()
        return cursor.lastrowid


async def get_attack_results(session_id: str, limit: int | None = None) -> list[AttackResult]:
    """Fetch results of a session in completion order."""
    query = "SELECT * FROM intruder_results WHERE session_id = ? ORDER BY sequence_id ASC"
    params: list = [session_id]
    if limit:
        query += " LIMIT ?"
        params.append(limit)
    async with aiosqlite.connect(DB_PATH) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(query, params)
        rows = await cursor.fetchall()
    return [_row_to_result(row) for row in rows]


async def get_attack_result(session_id: str, sequence_id: int) -> Optional[AttackResult]:
    async with aiosqlite.connect(DB_PATH) as db:
        db.row_factory = aiosqlite.Row
        cursor = await db.execute(
            "SELECT * FROM intruder_results WHERE session_id = ? AND sequence_id = ?",
            (session_id, sequence_id),
        )
        row = await cursor.fetchone()
    return _row_to_result(row) if row else None


async def clear_attack_results(session_id: str) -> None:
    """Delete all results for a session (a new run is starting)."""
    async with aiosqlite.connect(DB_PATH) as db:
        await db.execute(
            "DELETE FROM intruder_results WHERE session_id = ?", (session_id,)
        )
        await db.commit()


async def export_session(session_id: str) -> Optional[dict]:
    """Export a session and its results as one flat JSON-ready record."""
    session = await get_session(session_id)
    if session is None:
        return None
    return {
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "session": session.model_dump(mode="json", by_alias=True),
    }


# ── Helpers ────────────────────────────────────────────────────────


def _row_to_result(row) -> AttackResult:
    d = dict(row)
    d.pop("id", None)
    d.pop("session_id", None)
    return AttackResult(**d)


def _safe_json(raw: str) -> dict:
    """Parse JSON string, returning empty dict on failure."""
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, TypeError):
        return {}
