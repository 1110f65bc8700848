"""
Repository for the append-only audit_log table.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import aiosqlite

from timecord.datatypes.entity_datatypes import AuditRecord


def _from_row(row: aiosqlite.Row) -> AuditRecord:
    return AuditRecord(
        id=row["id"],
        guild_id=row["guild_id"],
        action=row["action"],
        kind=row["kind"],
        entity_id=row["entity_id"],
        actor_id=row["actor_id"],
        target_id=row["target_id"],
        details=json.loads(row["details"] or "{}"),
        created_at=row["created_at"],
    )


class AuditLogRepo:

    async def insert(
        self,
        conn: aiosqlite.Connection,
        *,
        guild_id: int,
        action: str,
        kind: str,
        entity_id: int,
        actor_id: Optional[int],
        target_id: Optional[int],
        details: Dict[str, Any],
        now: float,
    ) -> int:
        cursor = await conn.execute(
            """
            INSERT INTO audit_log (guild_id, action, kind, entity_id, actor_id, target_id, details, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (guild_id, action, kind, entity_id, actor_id, target_id, json.dumps(details, default=str), now),
        )
        return int(cursor.lastrowid)

    async def for_entity(self, conn: aiosqlite.Connection, kind: str, entity_id: int) -> List[AuditRecord]:
        rows = await conn.execute_fetchall(
            "SELECT * FROM audit_log WHERE kind = ? AND entity_id = ? ORDER BY id",
            (kind, entity_id),
        )
        return [_from_row(row) for row in rows]

    async def recent(self, conn: aiosqlite.Connection, guild_id: int, limit: int = 25) -> List[AuditRecord]:
        rows = await conn.execute_fetchall(
            "SELECT * FROM audit_log WHERE guild_id = ? ORDER BY id DESC LIMIT ?",
            (guild_id, limit),
        )
        return [_from_row(row) for row in rows]
