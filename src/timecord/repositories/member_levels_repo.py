"""
Read access to member levels, used for giveaway level requirements.

The levelling system that writes these rows is not part of this bot;
``set_level`` exists for imports and tests.
"""

from __future__ import annotations

import aiosqlite


class MemberLevelsRepo:

    async def get_level(self, conn: aiosqlite.Connection, guild_id: int, user_id: int) -> int:
        cursor = await conn.execute(
            "SELECT level FROM member_levels WHERE guild_id = ? AND user_id = ?",
            (guild_id, user_id),
        )
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def set_level(self, conn: aiosqlite.Connection, guild_id: int, user_id: int, level: int) -> None:
        await conn.execute(
            """
            INSERT INTO member_levels (guild_id, user_id, level) VALUES (?, ?, ?)
            ON CONFLICT(guild_id, user_id) DO UPDATE SET level = excluded.level
            """,
            (guild_id, user_id, level),
        )
