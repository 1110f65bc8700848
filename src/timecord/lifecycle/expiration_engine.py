"""
Generic arm / recover / sweep / expire engine for time-bounded entities.

One ``ExpirationEngine`` exists per entity kind. The kind-specific part is
an ``ExpirationEffect`` strategy; everything concurrency-sensitive (the
conditional ``active := false`` write, timer bookkeeping, idempotence) lives
here once.

Flow of ``process``::

    load row ── missing ──────────────► NOT_FOUND
       │
       ├── inactive ──────────────────► ALREADY_TERMINAL
       │
    UPDATE ... WHERE id = ? AND active = 1
       │
       ├── 0 rows (lost the race) ────► ALREADY_TERMINAL
       │
    cancel timer, apply effect, emit event ──► PROCESSED

Effect failures are logged and never undo the terminal write. Store
failures before the write propagate; the row stays active and overdue, so
the next sweep picks it up again.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Generic, Optional, Protocol, TypeVar

from timecord.database.db_connection import ConnectionManager
from timecord.datatypes.lifecycle_datatypes import (
    Actor,
    EntityKind,
    ExpirationContext,
    ExpirationOutcome,
    ExpirationReason,
)
from timecord.lifecycle.errors import AlreadyTerminal, EntityNotFound, Forbidden
from timecord.lifecycle.events import EventType, LifecycleEvent, LifecycleEvents
from timecord.lifecycle.timer_registry import TimerRegistry
from timecord.repositories.expirable_repo import ExpirableStore
from timecord.util.logger import get_logger

logger = get_logger("expiration_engine")

T = TypeVar("T")
T_contra = TypeVar("T_contra", contravariant=True)

SECONDS_PER_DAY = 24 * 60 * 60


class ExpirationEffect(Protocol[T_contra]):
    """Kind-specific behaviour plugged into an ``ExpirationEngine``."""

    kind: EntityKind

    async def apply(self, entity: T_contra, context: ExpirationContext) -> None:
        """
        Run the side effects of the active -> inactive transition.

        Only called by the caller that won the conditional update. The
        entity passed in already has ``active = False``.
        """
        ...

    def can_terminate(self, entity: T_contra, actor: Actor) -> bool:
        ...


class ExpirationEngine(Generic[T]):
    """Owns the timers of one entity kind and the single path to the inactive state."""

    def __init__(
        self,
        db: ConnectionManager,
        store: ExpirableStore[T],
        effect: ExpirationEffect[T],
        *,
        events: LifecycleEvents | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db = db
        self.store = store
        self.effect = effect
        self.events = events
        self.clock = clock
        self.timers = TimerRegistry(str(effect.kind), clock=clock)

    @property
    def kind(self) -> EntityKind:
        return self.effect.kind

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def arm(self, entity: Any) -> bool:
        """Arm a timer for an active entity with a deadline. Returns True if armed."""
        if not entity.active or entity.deadline is None:
            return False
        self._arm(entity.id, entity.deadline)
        return True

    def _arm(self, entity_id: int, deadline: float) -> None:
        self.timers.arm(entity_id, deadline, self._on_timer)

    async def _on_timer(self, entity_id: int) -> None:
        outcome = await self.process(entity_id)
        logger.debug("[%s ENGINE] Timer for #%s finished: %s", self._tag, entity_id, outcome)

    async def recover_guild(self, guild_id: int) -> int:
        """
        Re-arm a timer for every active row of ``guild_id`` that has a deadline.

        Overdue rows fire on the next loop iteration. A row that fails to arm
        is logged and skipped. Returns the number of timers armed.
        """
        async with self.db.read() as conn:
            rows = await self.store.list_armable(conn, guild_id)

        armed = 0
        for row in rows:
            try:
                self._arm(row.entity_id, row.deadline)
                armed += 1
            except Exception:
                logger.exception("[RECOVERY] Failed to arm %s #%s in guild %s", self.kind, row.entity_id, guild_id)

        if armed:
            logger.info("[RECOVERY] Armed %d %s timer(s) for guild %s", armed, self.kind, guild_id)
        return armed

    async def reschedule(self, entity_id: int, deadline: Optional[float]) -> None:
        """
        Move the deadline of an active entity and replace its timer.

        ``None`` removes the deadline and cancels the timer.

        Raises:
            EntityNotFound: No such entity.
            AlreadyTerminal: The entity is no longer active.
        """
        async with self.db.transaction() as conn:
            affected = await self.store.update_deadline(conn, entity_id, deadline, self.clock())
            if not affected:
                exists = await self.store.fetch(conn, entity_id)

        if not affected:
            if exists is None:
                raise EntityNotFound()
            raise AlreadyTerminal()

        if deadline is None:
            self.timers.cancel(entity_id)
        else:
            self._arm(entity_id, deadline)
        logger.info("[%s ENGINE] Rescheduled #%s to %s", self._tag, entity_id, deadline)

    # ------------------------------------------------------------------
    # Expiration
    # ------------------------------------------------------------------

    async def sweep(self, limit: int = 100) -> int:
        """
        Expire up to ``limit`` overdue rows across all guilds.

        Returns the number of rows this call transitioned. Rows already
        handled by a concurrent timer or sweep are counted by whoever won.
        """
        async with self.db.read() as conn:
            rows = await self.store.list_overdue(conn, self.clock(), limit)

        processed = 0
        for row in rows:
            try:
                if await self.process(row.entity_id) is ExpirationOutcome.PROCESSED:
                    processed += 1
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[SWEEP] Failed to expire %s #%s", self.kind, row.entity_id)

        if processed:
            logger.info("[SWEEP] Expired %d overdue %s(s)", processed, self.kind)
        return processed

    async def process(
        self,
        entity_id: int,
        context: ExpirationContext = ExpirationContext(),
    ) -> ExpirationOutcome:
        """Transition ``entity_id`` to inactive and apply its effect, at most once."""
        async with self.db.read() as conn:
            entity = await self.store.fetch(conn, entity_id)

        if entity is None:
            self.timers.cancel(entity_id)
            return ExpirationOutcome.NOT_FOUND
        if not entity.active:
            self.timers.cancel(entity_id)
            return ExpirationOutcome.ALREADY_TERMINAL

        now = self.clock()
        async with self.db.transaction() as conn:
            affected = await self.store.deactivate(conn, entity_id, now, ended_by=context.actor_id)

        self.timers.cancel(entity_id)
        if affected != 1:
            logger.debug("[%s ENGINE] #%s already processed by another caller", self._tag, entity_id)
            return ExpirationOutcome.ALREADY_TERMINAL

        entity.active = False
        entity.ended_by = context.actor_id
        entity.updated_at = now

        try:
            await self.effect.apply(entity, context)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[%s ENGINE] Effect failed for #%s after terminal write", self._tag, entity_id)

        if self.events is not None:
            event_type = EventType.EXPIRED if context.reason is ExpirationReason.EXPIRED else EventType.ENDED
            await self.events.emit(
                LifecycleEvent(
                    type=event_type,
                    kind=self.kind,
                    guild_id=entity.guild_id,
                    entity_id=entity_id,
                    actor_id=context.actor_id,
                    payload={"reason": str(context.reason)},
                )
            )

        logger.info("[%s ENGINE] #%s %s", self._tag, entity_id, context.reason)
        return ExpirationOutcome.PROCESSED

    async def terminate(
        self,
        entity_id: int,
        actor: Actor,
        reason: ExpirationReason = ExpirationReason.ENDED,
    ) -> None:
        """
        Manually end an entity on behalf of ``actor``.

        Shares ``process`` with natural expiration, so a timer that fires
        later finds the row inactive and does nothing.

        Raises:
            EntityNotFound: Unknown id, or an id from another guild.
            AlreadyTerminal: The entity already ended (possibly a moment ago).
            Forbidden: ``actor`` may not end this entity.
        """
        async with self.db.read() as conn:
            entity = await self.store.fetch(conn, entity_id)

        if entity is None or entity.guild_id != actor.guild_id:
            raise EntityNotFound()
        if not entity.active:
            raise AlreadyTerminal()
        if not self.effect.can_terminate(entity, actor):
            raise Forbidden()

        outcome = await self.process(entity_id, ExpirationContext(reason=reason, actor_id=actor.user_id))
        if outcome is not ExpirationOutcome.PROCESSED:
            raise AlreadyTerminal()

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def purge_history(self, retention_days: int) -> int:
        """Delete inactive rows untouched for ``retention_days``. Returns rows deleted."""
        cutoff = self.clock() - retention_days * SECONDS_PER_DAY
        async with self.db.transaction() as conn:
            deleted = await self.store.purge_inactive(conn, cutoff)
        if deleted:
            logger.info("[RETENTION] Purged %d inactive %s row(s)", deleted, self.kind)
        return deleted

    async def shutdown(self) -> None:
        await self.timers.shutdown()

    @property
    def _tag(self) -> str:
        return str(self.kind).upper()
