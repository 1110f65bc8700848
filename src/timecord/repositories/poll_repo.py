"""
Persistent storage for polls, their options and votes.

Vote uniqueness lives in the ``poll_votes`` table itself:
``UNIQUE(poll_id, user_id, slot)`` with ``slot = 0`` for single-choice polls
(one ballot per user) and ``slot = option_id`` for multi-choice polls (one
ballot per user and option).
"""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence, Tuple

import aiosqlite

from timecord.datatypes.entity_datatypes import Poll, PollOption
from timecord.datatypes.lifecycle_datatypes import VoteResult
from timecord.repositories.expirable_repo import ExpirableRepo, render_ref_from_row
from timecord.util.logger import get_logger

logger = get_logger("poll_repo")

_COLUMNS = (
    "id, guild_id, channel_id, message_id, creator_id, question, allow_multiple, anonymous, "
    "active, deadline, ended_by, created_at, updated_at"
)

SINGLE_CHOICE_SLOT = 0


def _poll_from_row(row: aiosqlite.Row, options: List[PollOption]) -> Poll:
    return Poll(
        id=row["id"],
        guild_id=row["guild_id"],
        channel_id=row["channel_id"],
        creator_id=row["creator_id"],
        question=row["question"],
        allow_multiple=bool(row["allow_multiple"]),
        anonymous=bool(row["anonymous"]),
        active=bool(row["active"]),
        deadline=row["deadline"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        options=options,
        render_ref=render_ref_from_row(row),
        ended_by=row["ended_by"],
    )


class PollRepo(ExpirableRepo[Poll]):
    """CRUD for ``polls``, ``poll_options`` and ``poll_votes``."""

    TABLE = "polls"

    # ------------------------------------------------------------------
    # Polls
    # ------------------------------------------------------------------

    async def insert(
        self,
        conn: aiosqlite.Connection,
        *,
        guild_id: int,
        channel_id: int,
        creator_id: int,
        question: str,
        options: Sequence[Tuple[str, str]],
        allow_multiple: bool,
        anonymous: bool,
        deadline: Optional[float],
        now: float,
    ) -> int:
        """Insert a poll with its ``(text, emoji)`` options, in order. Returns the poll id."""
        cursor = await conn.execute(
            """
            INSERT INTO polls
                (guild_id, channel_id, creator_id, question, allow_multiple, anonymous, active, deadline,
                 created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, 1, ?, ?, ?)
            """,
            (guild_id, channel_id, creator_id, question, int(allow_multiple), int(anonymous), deadline, now, now),
        )
        poll_id = int(cursor.lastrowid)
        await conn.executemany(
            "INSERT INTO poll_options (poll_id, text, emoji, order_index) VALUES (?, ?, ?, ?)",
            [(poll_id, text, emoji, index) for index, (text, emoji) in enumerate(options)],
        )
        return poll_id

    async def fetch(self, conn: aiosqlite.Connection, entity_id: int) -> Optional[Poll]:
        cursor = await conn.execute(f"SELECT {_COLUMNS} FROM polls WHERE id = ?", (entity_id,))
        row = await cursor.fetchone()
        if row is None:
            return None
        return _poll_from_row(row, await self.fetch_options(conn, entity_id))

    async def fetch_options(self, conn: aiosqlite.Connection, poll_id: int) -> List[PollOption]:
        rows = await conn.execute_fetchall(
            "SELECT id, poll_id, text, emoji, order_index FROM poll_options WHERE poll_id = ? ORDER BY order_index",
            (poll_id,),
        )
        return [PollOption(row[0], row[1], row[2], row[3], row[4]) for row in rows]

    async def list_active(self, conn: aiosqlite.Connection, guild_id: int) -> List[Poll]:
        polls = []
        for poll_id in await self.list_active_ids(conn, guild_id):
            poll = await self.fetch(conn, poll_id)
            if poll is not None:
                polls.append(poll)
        return polls

    # ------------------------------------------------------------------
    # Votes
    # ------------------------------------------------------------------

    async def set_single_choice_vote(
        self, conn: aiosqlite.Connection, poll_id: int, user_id: int, option_id: int, now: float
    ) -> VoteResult:
        """
        Replace the user's single ballot with ``option_id``.

        Must run inside a write transaction so the read of the previous
        ballot and the upsert see the same state.
        """
        cursor = await conn.execute(
            "SELECT option_id FROM poll_votes WHERE poll_id = ? AND user_id = ? AND slot = ?",
            (poll_id, user_id, SINGLE_CHOICE_SLOT),
        )
        previous = await cursor.fetchone()

        await conn.execute(
            """
            INSERT INTO poll_votes (poll_id, option_id, user_id, slot, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(poll_id, user_id, slot) DO UPDATE SET
                option_id  = excluded.option_id,
                created_at = excluded.created_at
            """,
            (poll_id, option_id, user_id, SINGLE_CHOICE_SLOT, now),
        )

        if previous is None or previous[0] == option_id:
            return VoteResult.ADDED
        return VoteResult.CHANGED

    async def toggle_multi_choice_vote(
        self, conn: aiosqlite.Connection, poll_id: int, user_id: int, option_id: int, now: float
    ) -> VoteResult:
        """Remove the ``(user, option)`` ballot if present, otherwise add it."""
        cursor = await conn.execute(
            "DELETE FROM poll_votes WHERE poll_id = ? AND user_id = ? AND slot = ?",
            (poll_id, user_id, option_id),
        )
        if cursor.rowcount:
            return VoteResult.REMOVED

        await conn.execute(
            "INSERT INTO poll_votes (poll_id, option_id, user_id, slot, created_at) VALUES (?, ?, ?, ?, ?)",
            (poll_id, option_id, user_id, option_id, now),
        )
        return VoteResult.ADDED

    async def user_votes(self, conn: aiosqlite.Connection, poll_id: int, user_id: int) -> List[int]:
        rows = await conn.execute_fetchall(
            "SELECT option_id FROM poll_votes WHERE poll_id = ? AND user_id = ? ORDER BY option_id",
            (poll_id, user_id),
        )
        return [row[0] for row in rows]

    async def vote_counts(self, conn: aiosqlite.Connection, poll_id: int) -> Dict[int, int]:
        """Return ``{option_id: votes}`` for options that received at least one vote."""
        rows = await conn.execute_fetchall(
            "SELECT option_id, COUNT(*) FROM poll_votes WHERE poll_id = ? GROUP BY option_id",
            (poll_id,),
        )
        return {row[0]: row[1] for row in rows}

    async def participant_count(self, conn: aiosqlite.Connection, poll_id: int) -> int:
        cursor = await conn.execute(
            "SELECT COUNT(DISTINCT user_id) FROM poll_votes WHERE poll_id = ?", (poll_id,)
        )
        row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def participants(self, conn: aiosqlite.Connection, poll_id: int) -> List[int]:
        rows = await conn.execute_fetchall(
            "SELECT DISTINCT user_id FROM poll_votes WHERE poll_id = ? ORDER BY user_id", (poll_id,)
        )
        return [row[0] for row in rows]
