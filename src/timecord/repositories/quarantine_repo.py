"""
Persistent storage for quarantine sanctions.

The partial unique index on ``(guild_id, target_id) WHERE active = 1`` makes
the store reject a second concurrent quarantine of the same member; the
insert surfaces that as ``aiosqlite.IntegrityError``.
"""

from __future__ import annotations

import json
from typing import List, Optional, Sequence

import aiosqlite

from timecord.datatypes.entity_datatypes import QuarantineEntry
from timecord.repositories.expirable_repo import ExpirableRepo, render_ref_from_row
from timecord.util.logger import get_logger

logger = get_logger("quarantine_repo")

_COLUMNS = (
    "id, guild_id, target_id, moderator_id, reason, previous_roles, active, deadline, "
    "channel_id, message_id, ended_by, created_at, updated_at"
)


def _from_row(row: aiosqlite.Row) -> QuarantineEntry:
    return QuarantineEntry(
        id=row["id"],
        guild_id=row["guild_id"],
        target_id=row["target_id"],
        moderator_id=row["moderator_id"],
        reason=row["reason"],
        previous_roles=[int(r) for r in json.loads(row["previous_roles"] or "[]")],
        active=bool(row["active"]),
        deadline=row["deadline"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        render_ref=render_ref_from_row(row),
        ended_by=row["ended_by"],
    )


class QuarantineRepo(ExpirableRepo[QuarantineEntry]):
    """CRUD for the ``quarantine_entries`` table."""

    TABLE = "quarantine_entries"

    async def insert(
        self,
        conn: aiosqlite.Connection,
        *,
        guild_id: int,
        target_id: int,
        moderator_id: int,
        reason: str,
        previous_roles: Sequence[int],
        deadline: Optional[float],
        now: float,
    ) -> int:
        """Insert an active entry and return its id."""
        cursor = await conn.execute(
            """
            INSERT INTO quarantine_entries
                (guild_id, target_id, moderator_id, reason, previous_roles, active, deadline, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, 1, ?, ?, ?)
            """,
            (guild_id, target_id, moderator_id, reason, json.dumps(list(previous_roles)), deadline, now, now),
        )
        return int(cursor.lastrowid)

    async def fetch(self, conn: aiosqlite.Connection, entity_id: int) -> Optional[QuarantineEntry]:
        cursor = await conn.execute(f"SELECT {_COLUMNS} FROM quarantine_entries WHERE id = ?", (entity_id,))
        row = await cursor.fetchone()
        return _from_row(row) if row else None

    async def fetch_active_for_member(
        self, conn: aiosqlite.Connection, guild_id: int, target_id: int
    ) -> Optional[QuarantineEntry]:
        cursor = await conn.execute(
            f"SELECT {_COLUMNS} FROM quarantine_entries WHERE guild_id = ? AND target_id = ? AND active = 1",
            (guild_id, target_id),
        )
        row = await cursor.fetchone()
        return _from_row(row) if row else None

    async def list_active(self, conn: aiosqlite.Connection, guild_id: int) -> List[QuarantineEntry]:
        rows = await conn.execute_fetchall(
            f"SELECT {_COLUMNS} FROM quarantine_entries WHERE guild_id = ? AND active = 1 ORDER BY created_at",
            (guild_id,),
        )
        return [_from_row(row) for row in rows]

    async def history(
        self, conn: aiosqlite.Connection, guild_id: int, target_id: int, limit: int = 10
    ) -> List[QuarantineEntry]:
        """Newest-first history of one member, active and inactive."""
        rows = await conn.execute_fetchall(
            f"SELECT {_COLUMNS} FROM quarantine_entries WHERE guild_id = ? AND target_id = ? "
            "ORDER BY created_at DESC, id DESC LIMIT ?",
            (guild_id, target_id, limit),
        )
        return [_from_row(row) for row in rows]
