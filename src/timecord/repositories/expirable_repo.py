"""
Shared SQL for tables that hold time-bounded entities.

Every entity table has the same lifecycle columns (``active``, ``deadline``,
``channel_id``/``message_id``, ``ended_by``, ``created_at``, ``updated_at``),
so the queries the engine depends on are written once here and each kind
repository only adds its own row mapping and payload queries.
"""

from __future__ import annotations

from typing import Any, Generic, List, Optional, Protocol, TypeVar

import aiosqlite

from timecord.datatypes.lifecycle_datatypes import MessageRef, ScheduledRow

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)


class ExpirableStore(Protocol[T_co]):
    """What the expiration engine needs from a persistence collaborator."""

    async def fetch(self, conn: aiosqlite.Connection, entity_id: int) -> Optional[T_co]: ...

    async def deactivate(
        self, conn: aiosqlite.Connection, entity_id: int, now: float, ended_by: Optional[int] = None
    ) -> int: ...

    async def list_armable(self, conn: aiosqlite.Connection, guild_id: int) -> List[ScheduledRow]: ...

    async def list_overdue(self, conn: aiosqlite.Connection, now: float, limit: int) -> List[ScheduledRow]: ...

    async def update_deadline(
        self, conn: aiosqlite.Connection, entity_id: int, deadline: Optional[float], now: float
    ) -> int: ...

    async def set_render_ref(self, conn: aiosqlite.Connection, entity_id: int, ref: MessageRef) -> None: ...

    async def purge_inactive(self, conn: aiosqlite.Connection, cutoff: float) -> int: ...


def render_ref_from_row(row: Any) -> Optional[MessageRef]:
    channel_id = row["channel_id"]
    message_id = row["message_id"]
    if channel_id is None or message_id is None:
        return None
    return MessageRef(channel_id=int(channel_id), message_id=int(message_id))


class ExpirableRepo(Generic[T]):
    """
    Base class implementing the lifecycle queries against ``TABLE``.

    Subclasses add ``fetch`` with their own row mapping, which completes
    ``ExpirableStore``.
    """

    TABLE: str = ""

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def deactivate(
        self,
        conn: aiosqlite.Connection,
        entity_id: int,
        now: float,
        ended_by: Optional[int] = None,
    ) -> int:
        """
        Conditionally flip ``active`` to 0.

        Returns the number of affected rows: 1 for the caller that won the
        transition, 0 for everyone else (already inactive or unknown id).
        """
        cursor = await conn.execute(
            f"UPDATE {self.TABLE} SET active = 0, ended_by = ?, updated_at = ? "
            "WHERE id = ? AND active = 1",
            (ended_by, now, entity_id),
        )
        return cursor.rowcount

    async def update_deadline(
        self,
        conn: aiosqlite.Connection,
        entity_id: int,
        deadline: Optional[float],
        now: float,
    ) -> int:
        """Move the deadline of an active row. Returns affected rows."""
        cursor = await conn.execute(
            f"UPDATE {self.TABLE} SET deadline = ?, updated_at = ? WHERE id = ? AND active = 1",
            (deadline, now, entity_id),
        )
        return cursor.rowcount

    async def set_render_ref(self, conn: aiosqlite.Connection, entity_id: int, ref: MessageRef) -> None:
        await conn.execute(
            f"UPDATE {self.TABLE} SET channel_id = ?, message_id = ? WHERE id = ?",
            (ref.channel_id, ref.message_id, entity_id),
        )

    async def delete(self, conn: aiosqlite.Connection, entity_id: int) -> None:
        """Remove a row outright. Only used to undo a creation whose first side effect failed."""
        await conn.execute(f"DELETE FROM {self.TABLE} WHERE id = ?", (entity_id,))

    async def purge_inactive(self, conn: aiosqlite.Connection, cutoff: float) -> int:
        """Delete inactive rows last touched before ``cutoff``. Child rows cascade."""
        cursor = await conn.execute(
            f"DELETE FROM {self.TABLE} WHERE active = 0 AND updated_at < ?",
            (cutoff,),
        )
        return cursor.rowcount

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def is_active(self, conn: aiosqlite.Connection, entity_id: int) -> bool:
        cursor = await conn.execute(f"SELECT active FROM {self.TABLE} WHERE id = ?", (entity_id,))
        row = await cursor.fetchone()
        return bool(row and row[0])

    async def list_armable(self, conn: aiosqlite.Connection, guild_id: int) -> List[ScheduledRow]:
        """Active rows of one guild that carry a deadline."""
        rows = await conn.execute_fetchall(
            f"SELECT id, guild_id, deadline FROM {self.TABLE} "
            "WHERE guild_id = ? AND active = 1 AND deadline IS NOT NULL ORDER BY deadline",
            (guild_id,),
        )
        return [ScheduledRow(row[0], row[1], row[2]) for row in rows]

    async def list_overdue(self, conn: aiosqlite.Connection, now: float, limit: int) -> List[ScheduledRow]:
        """Active rows of every guild whose deadline has passed, oldest first."""
        rows = await conn.execute_fetchall(
            f"SELECT id, guild_id, deadline FROM {self.TABLE} "
            "WHERE active = 1 AND deadline IS NOT NULL AND deadline <= ? ORDER BY deadline LIMIT ?",
            (now, limit),
        )
        return [ScheduledRow(row[0], row[1], row[2]) for row in rows]

    async def list_active_ids(self, conn: aiosqlite.Connection, guild_id: int) -> List[int]:
        rows = await conn.execute_fetchall(
            f"SELECT id FROM {self.TABLE} WHERE guild_id = ? AND active = 1 ORDER BY created_at",
            (guild_id,),
        )
        return [row[0] for row in rows]
