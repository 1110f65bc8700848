"""
Persistent storage for giveaways and their entries.

``giveaway_entries`` is ``UNIQUE(giveaway_id, user_id)``; a duplicate insert
raises ``aiosqlite.IntegrityError``, which callers translate into an entry
conflict.
"""

from __future__ import annotations

import json
from typing import List, Optional, Sequence

import aiosqlite

from timecord.datatypes.entity_datatypes import Giveaway
from timecord.repositories.expirable_repo import ExpirableRepo, render_ref_from_row
from timecord.util.logger import get_logger

logger = get_logger("giveaway_repo")

_COLUMNS = (
    "g.id, g.guild_id, g.channel_id, g.message_id, g.host_id, g.prize, g.description, "
    "g.winners_requested, g.required_role_id, g.required_level, g.winner_user_ids, g.active, "
    "g.deadline, g.ended_by, g.created_at, g.updated_at, "
    "(SELECT COUNT(*) FROM giveaway_entries e WHERE e.giveaway_id = g.id) AS entry_count"
)


def _from_row(row: aiosqlite.Row) -> Giveaway:
    return Giveaway(
        id=row["id"],
        guild_id=row["guild_id"],
        channel_id=row["channel_id"],
        host_id=row["host_id"],
        prize=row["prize"],
        description=row["description"],
        winners_requested=row["winners_requested"],
        required_role_id=row["required_role_id"],
        required_level=row["required_level"],
        winner_user_ids=[int(u) for u in json.loads(row["winner_user_ids"] or "[]")],
        active=bool(row["active"]),
        deadline=row["deadline"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        render_ref=render_ref_from_row(row),
        ended_by=row["ended_by"],
        entry_count=row["entry_count"],
    )


class GiveawayRepo(ExpirableRepo[Giveaway]):
    """CRUD for ``giveaways`` and ``giveaway_entries``."""

    TABLE = "giveaways"

    async def insert(
        self,
        conn: aiosqlite.Connection,
        *,
        guild_id: int,
        channel_id: int,
        host_id: int,
        prize: str,
        description: Optional[str],
        winners_requested: int,
        required_role_id: Optional[int],
        required_level: Optional[int],
        deadline: Optional[float],
        now: float,
    ) -> int:
        cursor = await conn.execute(
            """
            INSERT INTO giveaways
                (guild_id, channel_id, host_id, prize, description, winners_requested,
                 required_role_id, required_level, active, deadline, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
            """,
            (
                guild_id, channel_id, host_id, prize, description, winners_requested,
                required_role_id, required_level, deadline, now, now,
            ),
        )
        return int(cursor.lastrowid)

    async def fetch(self, conn: aiosqlite.Connection, entity_id: int) -> Optional[Giveaway]:
        cursor = await conn.execute(f"SELECT {_COLUMNS} FROM giveaways g WHERE g.id = ?", (entity_id,))
        row = await cursor.fetchone()
        return _from_row(row) if row else None

    async def list_active(self, conn: aiosqlite.Connection, guild_id: int) -> List[Giveaway]:
        rows = await conn.execute_fetchall(
            f"SELECT {_COLUMNS} FROM giveaways g WHERE g.guild_id = ? AND g.active = 1 ORDER BY g.deadline",
            (guild_id,),
        )
        return [_from_row(row) for row in rows]

    async def set_winners(
        self, conn: aiosqlite.Connection, giveaway_id: int, winner_ids: Sequence[int], now: float
    ) -> None:
        await conn.execute(
            "UPDATE giveaways SET winner_user_ids = ?, updated_at = ? WHERE id = ?",
            (json.dumps(list(winner_ids)), now, giveaway_id),
        )

    # ------------------------------------------------------------------
    # Entries
    # ------------------------------------------------------------------

    async def add_entry(self, conn: aiosqlite.Connection, giveaway_id: int, user_id: int, now: float) -> None:
        """
        Insert an entry.

        Raises:
            aiosqlite.IntegrityError: The user already entered this giveaway.
        """
        await conn.execute(
            "INSERT INTO giveaway_entries (giveaway_id, user_id, created_at) VALUES (?, ?, ?)",
            (giveaway_id, user_id, now),
        )

    async def entry_count(self, conn: aiosqlite.Connection, giveaway_id: int) -> int:
        cursor = await conn.execute(
            "SELECT COUNT(*) FROM giveaway_entries WHERE giveaway_id = ?", (giveaway_id,)
        )
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def entrants(self, conn: aiosqlite.Connection, giveaway_id: int) -> List[int]:
        """User ids in entry order."""
        rows = await conn.execute_fetchall(
            "SELECT user_id FROM giveaway_entries WHERE giveaway_id = ? ORDER BY id", (giveaway_id,)
        )
        return [row[0] for row in rows]
