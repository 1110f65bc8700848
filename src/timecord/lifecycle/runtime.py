"""
Explicit construction of the lifecycle object graph.

``build_runtime`` is the only place that wires engines, effects, services
and the router together. The Discord bot receives the resulting
``LifecycleRuntime`` and passes it to its cogs; nothing is looked up from
module-level singletons.
"""

from __future__ import annotations

import asyncio
import random
import secrets
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from timecord.configuration.app_configuration import LifecycleSettings
from timecord.database.db_connection import ConnectionManager
from timecord.datatypes.entity_datatypes import Giveaway, Poll, QuarantineEntry
from timecord.interactions.router import InteractionRouter
from timecord.lifecycle.effects.giveaway_effect import GiveawayEffect
from timecord.lifecycle.effects.poll_effect import PollEffect
from timecord.lifecycle.effects.quarantine_effect import QuarantineEffect
from timecord.lifecycle.events import LifecycleEvents
from timecord.lifecycle.expiration_engine import ExpirationEngine
from timecord.presentation.presenter import Presenter
from timecord.presentation.synchronizer import PresentationSynchronizer
from timecord.repositories.giveaway_repo import GiveawayRepo
from timecord.repositories.poll_repo import PollRepo
from timecord.repositories.quarantine_repo import QuarantineRepo
from timecord.services.audit_service import AuditService
from timecord.services.giveaway_service import GiveawayService
from timecord.services.poll_service import PollService
from timecord.services.quarantine_service import QuarantineService
from timecord.util.logger import get_logger

logger = get_logger("lifecycle_runtime")


@dataclass
class LifecycleRuntime:
    """Everything the Discord layer needs, built once per process."""

    db: ConnectionManager
    settings: LifecycleSettings
    events: LifecycleEvents
    audit: AuditService
    synchronizer: PresentationSynchronizer
    quarantine_engine: ExpirationEngine[QuarantineEntry]
    poll_engine: ExpirationEngine[Poll]
    giveaway_engine: ExpirationEngine[Giveaway]
    quarantine: QuarantineService
    polls: PollService
    giveaways: GiveawayService
    router: InteractionRouter

    @property
    def engines(self) -> List[ExpirationEngine[Any]]:
        return [self.quarantine_engine, self.poll_engine, self.giveaway_engine]

    async def recover_guild(self, guild_id: int) -> int:
        """Re-arm every kind's timers for one guild. A failing kind does not stop the others."""
        armed = 0
        for engine in self.engines:
            try:
                armed += await engine.recover_guild(guild_id)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[RECOVERY] %s recovery failed for guild %s", engine.kind, guild_id)
        return armed

    async def sweep_all(self) -> int:
        """One sweep pass per kind, each capped at ``sweep_batch_size`` rows."""
        processed = 0
        for engine in self.engines:
            try:
                processed += await engine.sweep(self.settings.sweep_batch_size)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[SWEEP] %s sweep failed", engine.kind)
        return processed

    async def purge_history(self) -> int:
        deleted = 0
        for engine in self.engines:
            try:
                deleted += await engine.purge_history(self.settings.retention_days)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("[RETENTION] %s purge failed", engine.kind)
        return deleted

    async def shutdown(self) -> None:
        """Cancel every in-memory timer. Stored state is untouched."""
        for engine in self.engines:
            await engine.shutdown()


def build_runtime(
    db: ConnectionManager,
    presenter: Presenter,
    settings: LifecycleSettings,
    *,
    clock: Callable[[], float] = time.time,
    rng: Optional[random.Random] = None,
) -> LifecycleRuntime:
    """Wire the lifecycle object graph around an open database and a presenter."""
    rng = rng or secrets.SystemRandom()
    events = LifecycleEvents()
    audit = AuditService(db, presenter, clock=clock)
    synchronizer = PresentationSynchronizer(db, presenter)

    quarantine_repo = QuarantineRepo()
    poll_repo = PollRepo()
    giveaway_repo = GiveawayRepo()

    quarantine_effect = QuarantineEffect(
        db, presenter, synchronizer, audit, notify_user=settings.quarantine.notify_user
    )
    poll_effect = PollEffect(db, poll_repo, synchronizer, audit)
    giveaway_effect = GiveawayEffect(db, giveaway_repo, presenter, synchronizer, audit, rng, clock=clock)

    quarantine_engine = ExpirationEngine(db, quarantine_repo, quarantine_effect, events=events, clock=clock)
    poll_engine = ExpirationEngine(db, poll_repo, poll_effect, events=events, clock=clock)
    giveaway_engine = ExpirationEngine(db, giveaway_repo, giveaway_effect, events=events, clock=clock)

    quarantine = QuarantineService(
        db, quarantine_repo, quarantine_engine, presenter, synchronizer, audit, events, settings.quarantine,
        clock=clock,
    )
    polls = PollService(db, poll_repo, poll_engine, poll_effect, synchronizer, events, settings.poll, clock=clock)
    giveaways = GiveawayService(
        db, giveaway_repo, giveaway_engine, giveaway_effect, synchronizer, audit, events, settings.giveaway,
        clock=clock,
    )

    return LifecycleRuntime(
        db=db,
        settings=settings,
        events=events,
        audit=audit,
        synchronizer=synchronizer,
        quarantine_engine=quarantine_engine,
        poll_engine=poll_engine,
        giveaway_engine=giveaway_engine,
        quarantine=quarantine,
        polls=polls,
        giveaways=giveaways,
        router=InteractionRouter(quarantine, polls, giveaways),
    )
