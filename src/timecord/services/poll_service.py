"""
Timed polls: creation, voting, early end and result queries.

Votes are written through the poll repository, whose uniqueness constraint
does the real work under concurrent clicks. Before each write the poll is
re-checked inside the same transaction, so a vote can never land on a poll
that another task has just closed.
"""

from __future__ import annotations

import time
from typing import Callable, List, Optional, Sequence, Tuple

from timecord.configuration.app_configuration import PollLimits
from timecord.database.db_connection import ConnectionManager
from timecord.datatypes.entity_datatypes import Poll, PollResults
from timecord.datatypes.lifecycle_datatypes import Actor, EntityKind, ExpirationReason, VoteResult
from timecord.lifecycle.effects.poll_effect import PollEffect
from timecord.lifecycle.errors import AlreadyTerminal, EntityNotFound, InvalidRequest, UpstreamUnavailable
from timecord.lifecycle.events import EventType, LifecycleEvent, LifecycleEvents
from timecord.lifecycle.expiration_engine import ExpirationEngine
from timecord.presentation.embeds import render_poll
from timecord.presentation.presenter import RenderedMessage
from timecord.presentation.synchronizer import PresentationSynchronizer
from timecord.repositories.poll_repo import PollRepo
from timecord.util.duration import format_duration
from timecord.util.logger import get_logger

logger = get_logger("poll_service")

MAX_QUESTION_LENGTH = 256
MAX_OPTION_LENGTH = 100

POLL_INACTIVE = "This poll is no longer active."
POLL_EXPIRED = "This poll has expired."


class PollService:

    def __init__(
        self,
        db: ConnectionManager,
        repo: PollRepo,
        engine: ExpirationEngine[Poll],
        effect: PollEffect,
        synchronizer: PresentationSynchronizer,
        events: LifecycleEvents,
        limits: PollLimits,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.db = db
        self.repo = repo
        self.engine = engine
        self.effect = effect
        self.synchronizer = synchronizer
        self.events = events
        self.limits = limits
        self.clock = clock
        synchronizer.register(EntityKind.POLL, repo, self._render)

    async def _render(self, poll: Poll) -> Tuple[int, RenderedMessage]:
        return poll.channel_id, render_poll(poll, await self.tally(poll))

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def validate(self, question: str, options: Sequence[str], duration_seconds: Optional[int]) -> List[str]:
        """Check creation arguments and return the cleaned option texts."""
        question = question.strip()
        if not question:
            raise InvalidRequest("The poll needs a question.")
        if len(question) > MAX_QUESTION_LENGTH:
            raise InvalidRequest(f"The question must be at most {MAX_QUESTION_LENGTH} characters.")

        cleaned = [opt.strip() for opt in options if opt and opt.strip()]
        if not self.limits.min_options <= len(cleaned) <= self.limits.max_options:
            raise InvalidRequest(
                f"A poll needs between {self.limits.min_options} and {self.limits.max_options} options."
            )
        if len(cleaned) > len(self.limits.vote_emojis):
            raise InvalidRequest("Not enough vote emojis are configured for that many options.")
        if any(len(opt) > MAX_OPTION_LENGTH for opt in cleaned):
            raise InvalidRequest(f"Options must be at most {MAX_OPTION_LENGTH} characters.")
        if len({opt.casefold() for opt in cleaned}) != len(cleaned):
            raise InvalidRequest("Poll options must be unique.")

        if duration_seconds is not None and not (
            self.limits.min_duration_seconds <= duration_seconds <= self.limits.max_duration_seconds
        ):
            raise InvalidRequest(
                f"Poll duration must be between {format_duration(self.limits.min_duration_seconds)} "
                f"and {format_duration(self.limits.max_duration_seconds)}."
            )
        return cleaned

    async def create_poll(
        self,
        guild_id: int,
        channel_id: int,
        actor: Actor,
        question: str,
        options: Sequence[str],
        *,
        duration_seconds: Optional[int] = None,
        allow_multiple: bool = False,
        anonymous: bool = False,
    ) -> Poll:
        """
        Store, render and arm a new poll.

        Raises:
            InvalidRequest: Bad question, options or duration.
            UpstreamUnavailable: The poll message could not be posted; nothing is kept.
        """
        cleaned = self.validate(question, options, duration_seconds)
        now = self.clock()
        deadline = now + duration_seconds if duration_seconds else None

        async with self.db.transaction() as conn:
            poll_id = await self.repo.insert(
                conn,
                guild_id=guild_id,
                channel_id=channel_id,
                creator_id=actor.user_id,
                question=question.strip(),
                options=list(zip(cleaned, self.limits.vote_emojis)),
                allow_multiple=allow_multiple,
                anonymous=anonymous,
                deadline=deadline,
                now=now,
            )
            poll = await self.repo.fetch(conn, poll_id)
        if poll is None:
            raise EntityNotFound("Poll not found.")

        if await self.synchronizer.sync(EntityKind.POLL, poll) is None:
            async with self.db.transaction() as conn:
                await self.repo.delete(conn, poll_id)
            raise UpstreamUnavailable("I could not post the poll in this channel. Check my permissions.")

        self.engine.arm(poll)
        await self.events.emit(
            LifecycleEvent(EventType.CREATED, EntityKind.POLL, guild_id, poll.id, actor.user_id,
                           {"question": poll.question, "deadline": deadline})
        )
        logger.info("[POLL SERVICE] Poll #%s created in guild %s by %s", poll.id, guild_id, actor.user_id)
        return poll

    # ------------------------------------------------------------------
    # Vote
    # ------------------------------------------------------------------

    async def vote(self, poll_id: int, actor: Actor, option_id: int) -> VoteResult:
        """
        Record a vote.

        Single-choice polls replace the user's previous ballot. Multi-choice
        polls toggle the ballot for ``option_id``. A poll past its deadline is
        expired on the spot and the vote is refused.
        """
        async with self.db.read() as conn:
            poll = await self.repo.fetch(conn, poll_id)

        if poll is None or poll.guild_id != actor.guild_id:
            raise EntityNotFound("Poll not found.")
        if not poll.active:
            raise AlreadyTerminal(POLL_INACTIVE)
        if poll.deadline is not None and poll.deadline <= self.clock():
            await self.engine.process(poll_id)
            raise AlreadyTerminal(POLL_EXPIRED)

        option = poll.option(option_id)
        if option is None:
            raise InvalidRequest("Invalid poll option.")

        async with self.db.transaction() as conn:
            if not await self.repo.is_active(conn, poll_id):
                result = None
            elif poll.allow_multiple:
                result = await self.repo.toggle_multi_choice_vote(conn, poll_id, actor.user_id, option_id, self.clock())
            else:
                result = await self.repo.set_single_choice_vote(conn, poll_id, actor.user_id, option_id, self.clock())

        if result is None:
            raise AlreadyTerminal(POLL_INACTIVE)

        await self.synchronizer.refresh(EntityKind.POLL, poll_id)
        await self.events.emit(
            LifecycleEvent(EventType.VOTED, EntityKind.POLL, poll.guild_id, poll_id, actor.user_id,
                           {"option_id": option_id, "result": str(result)})
        )
        logger.debug("[POLL SERVICE] Vote on poll #%s by %s: option %s %s", poll_id, actor.user_id, option_id, result)
        return result

    # ------------------------------------------------------------------
    # End / queries
    # ------------------------------------------------------------------

    async def end_poll(self, poll_id: int, actor: Actor) -> None:
        await self.engine.terminate(poll_id, actor, ExpirationReason.ENDED)

    async def get_poll(self, poll_id: int) -> Optional[Poll]:
        async with self.db.read() as conn:
            return await self.repo.fetch(conn, poll_id)

    async def list_active(self, guild_id: int) -> List[Poll]:
        async with self.db.read() as conn:
            return await self.repo.list_active(conn, guild_id)

    async def tally(self, poll: Poll) -> PollResults:
        return await self.effect.tally(poll)

    async def participants(self, poll_id: int) -> List[int]:
        async with self.db.read() as conn:
            return await self.repo.participants(conn, poll_id)

    async def user_votes(self, poll_id: int, user_id: int) -> List[int]:
        async with self.db.read() as conn:
            return await self.repo.user_votes(conn, poll_id, user_id)
