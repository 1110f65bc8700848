"""
Quarantine sanctions: strip a member's roles, hold them in a restricted role,
and give everything back when the sanction expires or is lifted.

Creation happens here; the terminal transition always goes through the
quarantine ``ExpirationEngine`` so that expiry and manual removal share the
same effect code.
"""

from __future__ import annotations

import time
from typing import Callable, List, Optional, Tuple

import aiosqlite

from timecord.configuration.app_configuration import QuarantineLimits
from timecord.database.db_connection import ConnectionManager
from timecord.datatypes.entity_datatypes import QuarantineEntry
from timecord.datatypes.lifecycle_datatypes import Actor, EntityKind, ExpirationReason
from timecord.lifecycle.errors import (
    EntityNotFound,
    EntryConflict,
    Forbidden,
    InvalidRequest,
    LifecycleError,
    UpstreamUnavailable,
)
from timecord.lifecycle.events import EventType, LifecycleEvent, LifecycleEvents
from timecord.lifecycle.expiration_engine import ExpirationEngine
from timecord.presentation.embeds import render_quarantine_dm, render_quarantine_log
from timecord.presentation.presenter import Presenter, RenderedMessage
from timecord.presentation.synchronizer import PresentationSynchronizer
from timecord.repositories.guild_settings_repo import GuildSettingsRepo
from timecord.repositories.quarantine_repo import QuarantineRepo
from timecord.services.audit_service import AuditAction, AuditService
from timecord.util.duration import format_duration
from timecord.util.logger import get_logger

logger = get_logger("quarantine_service")

ROLE_NOT_CONFIGURED = "Quarantine role not configured. Use /quarantine setup first."


def snapshot_roles(member_roles: List[int], *, guild_id: int, quarantine_role_id: int) -> List[int]:
    """Roles to remember before quarantining: everything except the everyone-role and the quarantine role."""
    return [r for r in member_roles if r != guild_id and r != quarantine_role_id]


class QuarantineService:

    def __init__(
        self,
        db: ConnectionManager,
        repo: QuarantineRepo,
        engine: ExpirationEngine[QuarantineEntry],
        presenter: Presenter,
        synchronizer: PresentationSynchronizer,
        audit: AuditService,
        events: LifecycleEvents,
        limits: QuarantineLimits,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db = db
        self.repo = repo
        self.engine = engine
        self.presenter = presenter
        self.synchronizer = synchronizer
        self.audit = audit
        self.events = events
        self.limits = limits
        self.clock = clock
        self.settings_repo = GuildSettingsRepo()
        synchronizer.register(EntityKind.QUARANTINE, repo, self._render)

    async def _render(self, entry: QuarantineEntry) -> Optional[Tuple[int, RenderedMessage]]:
        """Quarantine cards live in the guild's log channel, when one is set."""
        if entry.render_ref is not None:
            return entry.render_ref.channel_id, render_quarantine_log(entry)
        async with self.db.read() as conn:
            settings = await self.settings_repo.get(conn, entry.guild_id)
        if not settings.log_channel_id:
            return None
        return settings.log_channel_id, render_quarantine_log(entry)

    # ------------------------------------------------------------------
    # Guild setup
    # ------------------------------------------------------------------

    async def setup_role(self, guild_id: int, actor: Actor) -> int:
        """Create the quarantine role with channel denies and store it for the guild."""
        if not actor.privileged:
            raise Forbidden()
        role_id = await self.presenter.create_quarantine_role(guild_id, f"Quarantine setup by {actor.user_id}")
        async with self.db.transaction() as conn:
            await self.settings_repo.set_quarantine_role(conn, guild_id, role_id)
        logger.info("[QUARANTINE] Guild %s quarantine role set to %s", guild_id, role_id)
        return role_id

    async def set_log_channel(self, guild_id: int, channel_id: Optional[int], actor: Actor) -> None:
        if not actor.privileged:
            raise Forbidden()
        async with self.db.transaction() as conn:
            await self.settings_repo.set_log_channel(conn, guild_id, channel_id)
        logger.info("[QUARANTINE] Guild %s log channel set to %s", guild_id, channel_id)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def quarantine(
        self,
        guild_id: int,
        target_id: int,
        actor: Actor,
        *,
        reason: str = "",
        duration_seconds: Optional[int] = None,
        notify: Optional[bool] = None,
    ) -> QuarantineEntry:
        """
        Quarantine ``target_id``.

        Raises:
            Forbidden: ``actor`` is not privileged.
            InvalidRequest: Bad duration/reason or no quarantine role configured.
            EntityNotFound: The member is not in the guild.
            EntryConflict: The member is already quarantined.
            UpstreamUnavailable: Discord refused the role change; nothing is stored.
        """
        if not actor.privileged:
            raise Forbidden()
        if target_id == actor.user_id:
            raise InvalidRequest("You cannot quarantine yourself.")
        if len(reason) > self.limits.max_reason_length:
            raise InvalidRequest(f"Reason must be at most {self.limits.max_reason_length} characters.")
        if duration_seconds is not None and not 0 < duration_seconds <= self.limits.max_duration_seconds:
            raise InvalidRequest(
                f"Duration must be between 1 second and {format_duration(self.limits.max_duration_seconds)}."
            )

        async with self.db.read() as conn:
            settings = await self.settings_repo.get(conn, guild_id)
            existing = await self.repo.fetch_active_for_member(conn, guild_id, target_id)
        if not settings.quarantine_role_id:
            raise InvalidRequest(ROLE_NOT_CONFIGURED)
        if existing is not None:
            raise EntryConflict("User is already quarantined.")

        member_roles = await self.presenter.member_role_ids(guild_id, target_id)
        if member_roles is None:
            raise EntityNotFound("That member is not in this server.")
        previous = snapshot_roles(member_roles, guild_id=guild_id, quarantine_role_id=settings.quarantine_role_id)

        now = self.clock()
        deadline = now + duration_seconds if duration_seconds else None
        try:
            async with self.db.transaction() as conn:
                entry_id = await self.repo.insert(
                    conn,
                    guild_id=guild_id,
                    target_id=target_id,
                    moderator_id=actor.user_id,
                    reason=reason,
                    previous_roles=previous,
                    deadline=deadline,
                    now=now,
                )
        except aiosqlite.IntegrityError as exc:
            raise EntryConflict("User is already quarantined.") from exc

        try:
            await self.presenter.replace_roles(
                guild_id, target_id, [settings.quarantine_role_id], f"Quarantined by {actor.user_id}: {reason}"[:512]
            )
        except LifecycleError as exc:
            async with self.db.transaction() as conn:
                await self.repo.delete(conn, entry_id)
            logger.warning("[QUARANTINE] Rolled back entry #%s, role change failed: %s", entry_id, exc.user_message)
            raise UpstreamUnavailable("Failed to apply the quarantine role. Check my role position and permissions.") from exc

        async with self.db.read() as conn:
            entry = await self.repo.fetch(conn, entry_id)
        if entry is None:
            raise EntityNotFound("Quarantine not found.")

        self.engine.arm(entry)

        should_notify = self.limits.notify_user if notify is None else notify
        if should_notify:
            await self.presenter.notify_direct(target_id, render_quarantine_dm(entry))

        entry = await self.synchronizer.refresh(EntityKind.QUARANTINE, entry.id) or entry
        await self.audit.record(
            guild_id,
            AuditAction.QUARANTINE_ADD,
            EntityKind.QUARANTINE,
            entry.id,
            actor_id=actor.user_id,
            target_id=target_id,
            details={"reason": reason, "duration_seconds": duration_seconds, "previous_roles": previous},
        )
        await self.events.emit(
            LifecycleEvent(EventType.CREATED, EntityKind.QUARANTINE, guild_id, entry.id, actor.user_id,
                           {"target_id": target_id, "deadline": deadline})
        )
        logger.info("[QUARANTINE] Member %s quarantined in guild %s (entry #%s)", target_id, guild_id, entry.id)
        return entry

    # ------------------------------------------------------------------
    # Terminate / modify
    # ------------------------------------------------------------------

    async def remove(self, entry_id: int, actor: Actor) -> None:
        """Lift a quarantine by entry id."""
        await self.engine.terminate(entry_id, actor, ExpirationReason.REMOVED)

    async def remove_member(self, guild_id: int, target_id: int, actor: Actor) -> QuarantineEntry:
        """Lift the active quarantine of ``target_id``."""
        async with self.db.read() as conn:
            entry = await self.repo.fetch_active_for_member(conn, guild_id, target_id)
        if entry is None:
            raise EntityNotFound("That user is not quarantined.")
        await self.engine.terminate(entry.id, actor, ExpirationReason.REMOVED)
        return entry

    async def change_duration(self, entry_id: int, duration_seconds: Optional[int], actor: Actor) -> Optional[float]:
        """
        Set a new duration counted from now; ``None`` makes the quarantine indefinite.

        Returns the new deadline.
        """
        if not actor.privileged:
            raise Forbidden()
        if duration_seconds is not None and not 0 < duration_seconds <= self.limits.max_duration_seconds:
            raise InvalidRequest(
                f"Duration must be between 1 second and {format_duration(self.limits.max_duration_seconds)}."
            )

        async with self.db.read() as conn:
            entry = await self.repo.fetch(conn, entry_id)
        if entry is None or entry.guild_id != actor.guild_id:
            raise EntityNotFound("Quarantine not found.")

        deadline = self.clock() + duration_seconds if duration_seconds else None
        await self.engine.reschedule(entry_id, deadline)

        await self.synchronizer.refresh(EntityKind.QUARANTINE, entry_id)
        await self.audit.record(
            entry.guild_id,
            AuditAction.QUARANTINE_DURATION,
            EntityKind.QUARANTINE,
            entry_id,
            actor_id=actor.user_id,
            target_id=entry.target_id,
            details={"duration_seconds": duration_seconds, "deadline": deadline},
        )
        return deadline

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def status(self, guild_id: int, target_id: int) -> Optional[QuarantineEntry]:
        async with self.db.read() as conn:
            return await self.repo.fetch_active_for_member(conn, guild_id, target_id)

    async def history(self, guild_id: int, target_id: int, limit: int = 10) -> List[QuarantineEntry]:
        async with self.db.read() as conn:
            return await self.repo.history(conn, guild_id, target_id, limit)

    async def list_active(self, guild_id: int) -> List[QuarantineEntry]:
        async with self.db.read() as conn:
            return await self.repo.list_active(conn, guild_id)
