"""
Effect run when a poll ends: final tally, terminal render, audit entry.
"""

from __future__ import annotations

from typing import Dict

from timecord.database.db_connection import ConnectionManager
from timecord.datatypes.entity_datatypes import OptionTally, Poll, PollResults
from timecord.datatypes.lifecycle_datatypes import Actor, EntityKind, ExpirationContext
from timecord.presentation.synchronizer import PresentationSynchronizer
from timecord.repositories.poll_repo import PollRepo
from timecord.services.audit_service import AuditAction, AuditService


def build_results(poll: Poll, counts: Dict[int, int], participants: int) -> PollResults:
    """Combine per-option vote counts into ordered tallies with percentages of all votes."""
    total = sum(counts.get(option.id, 0) for option in poll.options)
    tallies = [
        OptionTally(
            option=option,
            votes=counts.get(option.id, 0),
            percentage=(counts.get(option.id, 0) / total * 100) if total else 0.0,
        )
        for option in poll.options
    ]
    return PollResults(tallies=tallies, total_votes=total, participants=participants)


class PollEffect:
    kind = EntityKind.POLL

    def __init__(
        self,
        db: ConnectionManager,
        repo: PollRepo,
        synchronizer: PresentationSynchronizer,
        audit: AuditService,
    ) -> None:
        self.db = db
        self.repo = repo
        self.synchronizer = synchronizer
        self.audit = audit

    def can_terminate(self, entity: Poll, actor: Actor) -> bool:
        return actor.user_id == entity.creator_id or actor.privileged

    async def tally(self, poll: Poll) -> PollResults:
        async with self.db.read() as conn:
            counts = await self.repo.vote_counts(conn, poll.id)
            participants = await self.repo.participant_count(conn, poll.id)
        return build_results(poll, counts, participants)

    async def apply(self, entity: Poll, context: ExpirationContext) -> None:
        results = await self.tally(entity)
        ref = await self.synchronizer.sync(EntityKind.POLL, entity)

        await self.audit.record(
            entity.guild_id,
            AuditAction.POLL_ENDED,
            EntityKind.POLL,
            entity.id,
            actor_id=context.actor_id,
            details={
                "reason": str(context.reason),
                "total_votes": results.total_votes,
                "participants": results.participants,
                "winning_options": [t.option.id for t in results.winners()],
                "failed_effects": [] if ref is not None else ["render"],
            },
            summary=f"Poll #{entity.id} \"{entity.question}\" ended with {results.total_votes} vote(s).",
        )
