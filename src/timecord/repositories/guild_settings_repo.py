"""
Repository for the guild_settings table.
"""

from __future__ import annotations

from typing import Optional

import aiosqlite

from timecord.datatypes.entity_datatypes import GuildSettings


class GuildSettingsRepo:
    """CRUD for per-guild lifecycle settings (quarantine role, log channel)."""

    async def get(self, conn: aiosqlite.Connection, guild_id: int) -> GuildSettings:
        """Return the guild's settings, or an empty record if none are stored."""
        cursor = await conn.execute(
            "SELECT guild_id, quarantine_role_id, log_channel_id FROM guild_settings WHERE guild_id = ?",
            (guild_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return GuildSettings(guild_id=guild_id)
        return GuildSettings(guild_id=row[0], quarantine_role_id=row[1], log_channel_id=row[2])

    async def set_quarantine_role(
        self, conn: aiosqlite.Connection, guild_id: int, role_id: Optional[int]
    ) -> None:
        await conn.execute(
            """
            INSERT INTO guild_settings (guild_id, quarantine_role_id) VALUES (?, ?)
            ON CONFLICT(guild_id) DO UPDATE SET quarantine_role_id = excluded.quarantine_role_id
            """,
            (guild_id, role_id),
        )

    async def set_log_channel(
        self, conn: aiosqlite.Connection, guild_id: int, channel_id: Optional[int]
    ) -> None:
        await conn.execute(
            """
            INSERT INTO guild_settings (guild_id, log_channel_id) VALUES (?, ?)
            ON CONFLICT(guild_id) DO UPDATE SET log_channel_id = excluded.log_channel_id
            """,
            (guild_id, channel_id),
        )
