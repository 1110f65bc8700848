"""
Row models for the three entity kinds and their child rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from timecord.datatypes.lifecycle_datatypes import EntityKind, MessageRef


@dataclass(slots=True)
class QuarantineEntry:
    """A quarantine sanction. ``previous_roles`` is the snapshot restored on lift."""

    id: int
    guild_id: int
    target_id: int
    moderator_id: int
    reason: str
    previous_roles: List[int]
    active: bool
    deadline: Optional[float]
    created_at: float
    updated_at: float
    render_ref: Optional[MessageRef] = None
    ended_by: Optional[int] = None

    kind = EntityKind.QUARANTINE


@dataclass(slots=True)
class PollOption:
    id: int
    poll_id: int
    text: str
    emoji: str
    order_index: int


@dataclass(slots=True)
class Poll:
    """A timed poll together with its ordered options."""

    id: int
    guild_id: int
    channel_id: int
    creator_id: int
    question: str
    allow_multiple: bool
    anonymous: bool
    active: bool
    deadline: Optional[float]
    created_at: float
    updated_at: float
    options: List[PollOption] = field(default_factory=list)
    render_ref: Optional[MessageRef] = None
    ended_by: Optional[int] = None

    kind = EntityKind.POLL

    def option(self, option_id: int) -> Optional[PollOption]:
        for opt in self.options:
            if opt.id == option_id:
                return opt
        return None


@dataclass(slots=True)
class OptionTally:
    option: PollOption
    votes: int
    percentage: float


@dataclass(slots=True)
class PollResults:
    """Final or running tally of a poll."""

    tallies: List[OptionTally]
    total_votes: int
    participants: int

    def winners(self) -> List[OptionTally]:
        """Options sharing the highest vote count, empty when nobody voted."""
        if self.total_votes == 0:
            return []
        top = max(t.votes for t in self.tallies)
        return [t for t in self.tallies if t.votes == top]


@dataclass(slots=True)
class Giveaway:
    """A timed giveaway. ``winner_user_ids`` is only written on end or reroll."""

    id: int
    guild_id: int
    channel_id: int
    host_id: int
    prize: str
    description: Optional[str]
    winners_requested: int
    required_role_id: Optional[int]
    required_level: Optional[int]
    winner_user_ids: List[int]
    active: bool
    deadline: Optional[float]
    created_at: float
    updated_at: float
    render_ref: Optional[MessageRef] = None
    ended_by: Optional[int] = None
    entry_count: int = 0

    kind = EntityKind.GIVEAWAY


@dataclass(slots=True)
class GuildSettings:
    guild_id: int
    quarantine_role_id: Optional[int] = None
    log_channel_id: Optional[int] = None


@dataclass(slots=True)
class AuditRecord:
    id: int
    guild_id: int
    action: str
    kind: str
    entity_id: int
    actor_id: Optional[int]
    target_id: Optional[int]
    details: dict
    created_at: float
