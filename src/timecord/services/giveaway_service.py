"""
Timed giveaways: creation, entry, early end and reroll.

Requirement checks (role, level) run at entry time only; an entrant who later
loses the role stays in the draw. Winners are drawn exclusively by
``GiveawayEffect.draw``, which both the natural end and reroll use.
"""

from __future__ import annotations

import time
from typing import Callable, List, Optional, Tuple

import aiosqlite

from timecord.configuration.app_configuration import GiveawayLimits
from timecord.database.db_connection import ConnectionManager
from timecord.datatypes.entity_datatypes import Giveaway
from timecord.datatypes.lifecycle_datatypes import Actor, EntityKind, ExpirationReason
from timecord.lifecycle.effects.giveaway_effect import GiveawayEffect
from timecord.lifecycle.errors import (
    AlreadyTerminal,
    EntityNotFound,
    EntryConflict,
    Forbidden,
    InvalidRequest,
    UpstreamUnavailable,
)
from timecord.lifecycle.events import EventType, LifecycleEvent, LifecycleEvents
from timecord.lifecycle.expiration_engine import ExpirationEngine
from timecord.presentation.embeds import render_giveaway
from timecord.presentation.presenter import RenderedMessage
from timecord.presentation.synchronizer import PresentationSynchronizer
from timecord.repositories.giveaway_repo import GiveawayRepo
from timecord.repositories.member_levels_repo import MemberLevelsRepo
from timecord.services.audit_service import AuditAction, AuditService
from timecord.util.duration import format_duration
from timecord.util.logger import get_logger

logger = get_logger("giveaway_service")

MAX_PRIZE_LENGTH = 256

GIVEAWAY_INACTIVE = "This giveaway is no longer active."
GIVEAWAY_EXPIRED = "This giveaway has expired."
ALREADY_ENTERED = "You have already entered this giveaway!"


class GiveawayService:

    def __init__(
        self,
        db: ConnectionManager,
        repo: GiveawayRepo,
        engine: ExpirationEngine[Giveaway],
        effect: GiveawayEffect,
        synchronizer: PresentationSynchronizer,
        audit: AuditService,
        events: LifecycleEvents,
        limits: GiveawayLimits,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db = db
        self.repo = repo
        self.engine = engine
        self.effect = effect
        self.synchronizer = synchronizer
        self.audit = audit
        self.events = events
        self.limits = limits
        self.clock = clock
        self.levels_repo = MemberLevelsRepo()
        synchronizer.register(EntityKind.GIVEAWAY, repo, self._render)

    async def _render(self, giveaway: Giveaway) -> Tuple[int, RenderedMessage]:
        return giveaway.channel_id, render_giveaway(giveaway, self.limits.entry_emoji)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def create_giveaway(
        self,
        guild_id: int,
        channel_id: int,
        actor: Actor,
        prize: str,
        duration_seconds: int,
        *,
        winners: int = 1,
        description: Optional[str] = None,
        required_role_id: Optional[int] = None,
        required_level: Optional[int] = None,
    ) -> Giveaway:
        """
        Store, render and arm a new giveaway.

        Raises:
            InvalidRequest: Bad prize, duration, winner count or level.
            UpstreamUnavailable: The giveaway message could not be posted; nothing is kept.
        """
        prize = prize.strip()
        if not prize or len(prize) > MAX_PRIZE_LENGTH:
            raise InvalidRequest(f"The prize must be between 1 and {MAX_PRIZE_LENGTH} characters.")
        if not self.limits.min_duration_seconds <= duration_seconds <= self.limits.max_duration_seconds:
            raise InvalidRequest(
                f"Giveaway duration must be between {format_duration(self.limits.min_duration_seconds)} "
                f"and {format_duration(self.limits.max_duration_seconds)}."
            )
        if not 1 <= winners <= self.limits.max_winners:
            raise InvalidRequest(f"Winner count must be between 1 and {self.limits.max_winners}.")
        if required_level is not None and required_level < 1:
            raise InvalidRequest("Required level must be at least 1.")

        now = self.clock()
        async with self.db.transaction() as conn:
            giveaway_id = await self.repo.insert(
                conn,
                guild_id=guild_id,
                channel_id=channel_id,
                host_id=actor.user_id,
                prize=prize,
                description=description,
                winners_requested=winners,
                required_role_id=required_role_id,
                required_level=required_level,
                deadline=now + duration_seconds,
                now=now,
            )
            giveaway = await self.repo.fetch(conn, giveaway_id)
        if giveaway is None:
            raise EntityNotFound("Giveaway not found.")

        if await self.synchronizer.sync(EntityKind.GIVEAWAY, giveaway) is None:
            async with self.db.transaction() as conn:
                await self.repo.delete(conn, giveaway_id)
            raise UpstreamUnavailable("I could not post the giveaway in this channel. Check my permissions.")

        self.engine.arm(giveaway)
        await self.events.emit(
            LifecycleEvent(EventType.CREATED, EntityKind.GIVEAWAY, guild_id, giveaway.id, actor.user_id,
                           {"prize": prize, "deadline": giveaway.deadline})
        )
        logger.info("[GIVEAWAY SERVICE] Giveaway #%s created in guild %s by %s", giveaway.id, guild_id, actor.user_id)
        return giveaway

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------

    async def enter(self, giveaway_id: int, actor: Actor) -> int:
        """
        Enter ``actor`` into the giveaway and return the new entry count.

        Raises:
            EntityNotFound: Unknown giveaway.
            AlreadyTerminal: The giveaway ended or just expired.
            InvalidRequest: A role or level requirement is not met.
            EntryConflict: ``actor`` already entered.
        """
        async with self.db.read() as conn:
            giveaway = await self.repo.fetch(conn, giveaway_id)

        if giveaway is None or giveaway.guild_id != actor.guild_id:
            raise EntityNotFound("Giveaway not found.")
        if not giveaway.active:
            raise AlreadyTerminal(GIVEAWAY_INACTIVE)
        if giveaway.deadline is not None and giveaway.deadline <= self.clock():
            await self.engine.process(giveaway_id)
            raise AlreadyTerminal(GIVEAWAY_EXPIRED)

        await self.check_requirements(giveaway, actor)

        try:
            async with self.db.transaction() as conn:
                if not await self.repo.is_active(conn, giveaway_id):
                    count = None
                else:
                    await self.repo.add_entry(conn, giveaway_id, actor.user_id, self.clock())
                    count = await self.repo.entry_count(conn, giveaway_id)
        except aiosqlite.IntegrityError as exc:
            raise EntryConflict(ALREADY_ENTERED) from exc

        if count is None:
            raise AlreadyTerminal(GIVEAWAY_INACTIVE)

        await self.synchronizer.refresh(EntityKind.GIVEAWAY, giveaway_id)
        await self.events.emit(
            LifecycleEvent(EventType.ENTERED, EntityKind.GIVEAWAY, giveaway.guild_id, giveaway_id, actor.user_id,
                           {"entries": count})
        )
        return count

    async def check_requirements(self, giveaway: Giveaway, actor: Actor) -> None:
        if giveaway.required_role_id and not actor.has_role(giveaway.required_role_id):
            raise InvalidRequest(f"You need the <@&{giveaway.required_role_id}> role to enter this giveaway.")

        if giveaway.required_level:
            async with self.db.read() as conn:
                level = await self.levels_repo.get_level(conn, giveaway.guild_id, actor.user_id)
            if level < giveaway.required_level:
                raise InvalidRequest(
                    f"You need to be level {giveaway.required_level} or higher to enter this giveaway. "
                    f"(Current level: {level})"
                )

    # ------------------------------------------------------------------
    # End / reroll
    # ------------------------------------------------------------------

    async def end_giveaway(self, giveaway_id: int, actor: Actor) -> None:
        await self.engine.terminate(giveaway_id, actor, ExpirationReason.ENDED)

    async def reroll(self, giveaway_id: int, actor: Actor) -> List[int]:
        """
        Draw new winners for an ended giveaway.

        Previous winners stay in the pool unless
        ``exclude_previous_winners_on_reroll`` is enabled.
        """
        async with self.db.read() as conn:
            giveaway = await self.repo.fetch(conn, giveaway_id)

        if giveaway is None or giveaway.guild_id != actor.guild_id:
            raise EntityNotFound("Giveaway not found.")
        if giveaway.active:
            raise InvalidRequest("This giveaway is still running. End it before rerolling.")
        if not self.effect.can_terminate(giveaway, actor):
            raise Forbidden("Only the host or a moderator can reroll this giveaway.")

        previous = list(giveaway.winner_user_ids)
        exclude = previous if self.limits.exclude_previous_winners_on_reroll else ()
        failed = await self.effect.draw(giveaway, exclude, rerolled=True)

        await self.audit.record(
            giveaway.guild_id,
            AuditAction.GIVEAWAY_REROLLED,
            EntityKind.GIVEAWAY,
            giveaway_id,
            actor_id=actor.user_id,
            details={"previous_winners": previous, "winners": giveaway.winner_user_ids, "failed_effects": failed},
            summary=f"Giveaway #{giveaway_id} for **{giveaway.prize}** was rerolled.",
        )
        await self.events.emit(
            LifecycleEvent(EventType.REROLLED, EntityKind.GIVEAWAY, giveaway.guild_id, giveaway_id, actor.user_id,
                           {"winners": giveaway.winner_user_ids})
        )
        return giveaway.winner_user_ids

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_giveaway(self, giveaway_id: int) -> Optional[Giveaway]:
        async with self.db.read() as conn:
            return await self.repo.fetch(conn, giveaway_id)

    async def list_active(self, guild_id: int) -> List[Giveaway]:
        async with self.db.read() as conn:
            return await self.repo.list_active(conn, guild_id)

    async def participants(self, giveaway_id: int) -> List[int]:
        async with self.db.read() as conn:
            return await self.repo.entrants(conn, giveaway_id)
