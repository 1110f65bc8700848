"""
Audit trail for lifecycle transitions.

Every manual or automatic state change that matters to moderators is written
to ``audit_log``; when the guild has a log channel, a short embed is posted
there as well (best-effort).
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from timecord.database.db_connection import ConnectionManager
from timecord.datatypes.entity_datatypes import AuditRecord
from timecord.datatypes.lifecycle_datatypes import EntityKind
from timecord.presentation.embeds import render_audit_entry
from timecord.presentation.presenter import Presenter
from timecord.repositories.audit_log_repo import AuditLogRepo
from timecord.repositories.guild_settings_repo import GuildSettingsRepo
from timecord.util.logger import get_logger

logger = get_logger("audit_service")


class AuditAction(Enum):
    QUARANTINE_ADD = "QUARANTINE_ADD"
    QUARANTINE_REMOVE = "QUARANTINE_REMOVE"
    QUARANTINE_EXPIRED = "QUARANTINE_EXPIRED"
    QUARANTINE_DURATION = "QUARANTINE_DURATION"
    POLL_ENDED = "POLL_ENDED"
    GIVEAWAY_ENDED = "GIVEAWAY_ENDED"
    GIVEAWAY_REROLLED = "GIVEAWAY_REROLLED"

    def __str__(self) -> str:
        return self.value


class AuditService:

    def __init__(
        self,
        db: ConnectionManager,
        presenter: Presenter,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db = db
        self.presenter = presenter
        self.clock = clock
        self.repo = AuditLogRepo()
        self.settings_repo = GuildSettingsRepo()

    async def record(
        self,
        guild_id: int,
        action: AuditAction,
        kind: EntityKind,
        entity_id: int,
        *,
        actor_id: Optional[int] = None,
        target_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        summary: Optional[str] = None,
    ) -> int:
        """
        Insert an audit row and, if ``summary`` is given, post it to the log channel.

        Returns the audit row id.
        """
        async with self.db.transaction() as conn:
            audit_id = await self.repo.insert(
                conn,
                guild_id=guild_id,
                action=str(action),
                kind=str(kind),
                entity_id=entity_id,
                actor_id=actor_id,
                target_id=target_id,
                details=details or {},
                now=self.clock(),
            )

        failed = (details or {}).get("failed_effects")
        if failed:
            logger.warning("[AUDIT] %s %s #%s completed with failed effects: %s", action, kind, entity_id, failed)
        else:
            logger.info("[AUDIT] %s %s #%s (actor=%s)", action, kind, entity_id, actor_id)

        if summary:
            async with self.db.read() as conn:
                settings = await self.settings_repo.get(conn, guild_id)
            if settings.log_channel_id:
                await self.presenter.post(settings.log_channel_id, render_audit_entry(str(action), summary))

        return audit_id

    async def for_entity(self, kind: EntityKind, entity_id: int) -> List[AuditRecord]:
        async with self.db.read() as conn:
            return await self.repo.for_entity(conn, str(kind), entity_id)

    async def recent(self, guild_id: int, limit: int = 25) -> List[AuditRecord]:
        async with self.db.read() as conn:
            return await self.repo.recent(conn, guild_id, limit)
