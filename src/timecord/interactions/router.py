"""
Routes component presses to the same service calls the slash commands use.

The router knows nothing about ``discord``: it takes the raw custom id and
an ``Actor`` and returns the text to show the user. Errors are raised as
``LifecycleError`` and turned into ephemeral replies by the cog.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from timecord.datatypes.lifecycle_datatypes import Actor, VoteResult
from timecord.lifecycle.errors import InvalidRequest
from timecord.presentation.embeds import GIVEAWAY_EMOJI, POLL_EMOJI, SUCCESS_EMOJI, UNLOCK_EMOJI
from timecord.presentation.views import CUSTOM_ID_PREFIX
from timecord.services.giveaway_service import GiveawayService
from timecord.services.poll_service import PollService
from timecord.services.quarantine_service import QuarantineService
from timecord.util.logger import get_logger

logger = get_logger("interaction_router")


@dataclass(frozen=True, slots=True)
class ComponentAction:
    """A parsed ``timecord:<kind>:<action>:<id>[:<option>]`` custom id."""

    kind: str
    action: str
    entity_id: int
    option_id: Optional[int] = None


def parse_custom_id(custom_id: str) -> Optional[ComponentAction]:
    """Parse a component custom id. Returns None for ids this bot does not own or cannot read."""
    parts = custom_id.split(":")
    if len(parts) < 4 or parts[0] != CUSTOM_ID_PREFIX:
        return None

    _, kind, action, *numbers = parts
    try:
        values = [int(n) for n in numbers]
    except ValueError:
        return None

    if kind == "poll" and action == "vote" and len(values) == 2:
        return ComponentAction(kind, action, values[0], values[1])
    if (kind, action) in {("poll", "end"), ("giveaway", "enter"), ("giveaway", "end"), ("quarantine", "remove")} \
            and len(values) == 1:
        return ComponentAction(kind, action, values[0])
    return None


class InteractionRouter:

    def __init__(
        self,
        quarantine: QuarantineService,
        polls: PollService,
        giveaways: GiveawayService,
    ) -> None:
        self.quarantine = quarantine
        self.polls = polls
        self.giveaways = giveaways

    async def dispatch(self, custom_id: str, actor: Actor) -> str:
        """Run the action behind ``custom_id`` for ``actor`` and return the reply text."""
        action = parse_custom_id(custom_id)
        if action is None:
            logger.warning("[ROUTER] Unknown component id %r from user %s", custom_id, actor.user_id)
            raise InvalidRequest("This button is no longer supported.")

        logger.debug("[ROUTER] %s:%s #%s by %s", action.kind, action.action, action.entity_id, actor.user_id)

        if action.kind == "poll" and action.action == "vote":
            return await self._vote(action.entity_id, action.option_id, actor)
        if action.kind == "poll" and action.action == "end":
            await self.polls.end_poll(action.entity_id, actor)
            return f"{POLL_EMOJI} The poll has been ended."
        if action.kind == "giveaway" and action.action == "enter":
            count = await self.giveaways.enter(action.entity_id, actor)
            return f"{GIVEAWAY_EMOJI} You have entered the giveaway! ({count} entr{'y' if count == 1 else 'ies'})"
        if action.kind == "giveaway" and action.action == "end":
            await self.giveaways.end_giveaway(action.entity_id, actor)
            return f"{GIVEAWAY_EMOJI} The giveaway has been ended."
        # quarantine:remove is the only remaining combination parse_custom_id accepts
        await self.quarantine.remove(action.entity_id, actor)
        return f"{UNLOCK_EMOJI} The quarantine has been lifted."

    async def _vote(self, poll_id: int, option_id: int, actor: Actor) -> str:
        result = await self.polls.vote(poll_id, actor, option_id)

        poll = await self.polls.get_poll(poll_id)
        option = poll.option(option_id) if poll else None
        label = f"\"{option.text}\"" if option else "that option"

        if result is VoteResult.REMOVED:
            return f"{SUCCESS_EMOJI} Your vote for {label} has been removed."
        if result is VoteResult.CHANGED:
            return f"{SUCCESS_EMOJI} Your vote has been changed to {label}."
        return f"{SUCCESS_EMOJI} Your vote for {label} has been recorded."
