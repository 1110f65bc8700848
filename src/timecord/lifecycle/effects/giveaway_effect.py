"""
Effect run when a giveaway ends, and the redraw used by reroll.
"""

from __future__ import annotations

import random
import time
from typing import Callable, Iterable, List, Sequence

from timecord.database.db_connection import ConnectionManager
from timecord.datatypes.entity_datatypes import Giveaway
from timecord.datatypes.lifecycle_datatypes import Actor, EntityKind, ExpirationContext
from timecord.presentation.embeds import render_winner_announcement, render_winner_dm
from timecord.presentation.presenter import Presenter
from timecord.presentation.synchronizer import PresentationSynchronizer
from timecord.repositories.giveaway_repo import GiveawayRepo
from timecord.services.audit_service import AuditAction, AuditService
from timecord.util.logger import get_logger

logger = get_logger("giveaway_effect")


def select_winners(
    entrants: Sequence[int],
    count: int,
    rng: random.Random,
    exclude: Iterable[int] = (),
) -> List[int]:
    """
    Draw ``min(count, candidates)`` distinct winners uniformly without replacement.

    ``entrants`` may contain duplicates; each user is one candidate.
    """
    excluded = set(exclude)
    candidates = [uid for uid in dict.fromkeys(entrants) if uid not in excluded]
    k = min(max(count, 0), len(candidates))
    return rng.sample(candidates, k) if k else []


class GiveawayEffect:
    kind = EntityKind.GIVEAWAY

    def __init__(
        self,
        db: ConnectionManager,
        repo: GiveawayRepo,
        presenter: Presenter,
        synchronizer: PresentationSynchronizer,
        audit: AuditService,
        rng: random.Random,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db = db
        self.repo = repo
        self.presenter = presenter
        self.synchronizer = synchronizer
        self.audit = audit
        self.rng = rng
        self.clock = clock

    def can_terminate(self, entity: Giveaway, actor: Actor) -> bool:
        return actor.user_id == entity.host_id or actor.privileged

    async def apply(self, entity: Giveaway, context: ExpirationContext) -> None:
        failed = await self.draw(entity)
        await self.audit.record(
            entity.guild_id,
            AuditAction.GIVEAWAY_ENDED,
            EntityKind.GIVEAWAY,
            entity.id,
            actor_id=context.actor_id,
            details={
                "reason": str(context.reason),
                "entries": entity.entry_count,
                "winners": entity.winner_user_ids,
                "failed_effects": failed,
            },
            summary=f"Giveaway #{entity.id} for **{entity.prize}** ended with "
                    f"{len(entity.winner_user_ids)} winner(s).",
        )

    async def draw(self, entity: Giveaway, exclude: Iterable[int] = (), *, rerolled: bool = False) -> List[str]:
        """
        Pick winners, store them, re-render and announce.

        Shared by natural end and reroll. Returns the names of side effects
        that failed; the stored winners are kept regardless.
        """
        failed: List[str] = []

        async with self.db.read() as conn:
            entrants = await self.repo.entrants(conn, entity.id)

        winners = select_winners(entrants, entity.winners_requested, self.rng, exclude)
        async with self.db.transaction() as conn:
            await self.repo.set_winners(conn, entity.id, winners, self.clock())

        entity.winner_user_ids = winners
        entity.entry_count = len(entrants)

        if await self.synchronizer.sync(EntityKind.GIVEAWAY, entity) is None:
            failed.append("render")

        if await self.presenter.post(entity.channel_id, render_winner_announcement(entity, rerolled)) is None:
            failed.append("announce")

        for winner_id in winners:
            if not await self.presenter.notify_direct(winner_id, render_winner_dm(entity)):
                failed.append(f"notify_direct:{winner_id}")

        logger.info("[GIVEAWAY] #%s drew %d winner(s) from %d entrant(s)", entity.id, len(winners), len(entrants))
        return failed
