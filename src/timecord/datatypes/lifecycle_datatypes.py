"""
Shared value types for the lifecycle engine.

These types are kind-agnostic: the engine, the synchronizer and the
interaction router only ever see entity kinds, message references, actors
and outcome enums defined here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet, NamedTuple, Optional


class EntityKind(Enum):
    """The three kinds of time-bounded entity."""

    QUARANTINE = "quarantine"
    POLL = "poll"
    GIVEAWAY = "giveaway"

    def __str__(self) -> str:
        return self.value


class ExpirationReason(Enum):
    """Why an entity left the active state."""

    EXPIRED = "expired"
    ENDED = "ended"
    REMOVED = "removed"

    def __str__(self) -> str:
        return self.value


class ExpirationOutcome(Enum):
    """Result of one ``ExpirationEngine.process`` call."""

    PROCESSED = "processed"
    ALREADY_TERMINAL = "already_terminal"
    NOT_FOUND = "not_found"

    def __str__(self) -> str:
        return self.value


class VoteResult(Enum):
    """What a vote interaction did to the voter's ballot."""

    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class MessageRef:
    """Location of a rendered message."""

    channel_id: int
    message_id: int


@dataclass(frozen=True, slots=True)
class ExpirationContext:
    """Passed to every effect so it can tell natural expiry from manual termination."""

    reason: ExpirationReason = ExpirationReason.EXPIRED
    actor_id: Optional[int] = None

    @property
    def is_manual(self) -> bool:
        return self.actor_id is not None


@dataclass(frozen=True, slots=True)
class Actor:
    """
    The member behind a command or component interaction.

    ``privileged`` is resolved by the Discord layer from the configured
    permission names; the engine only reads the flag.
    """

    user_id: int
    guild_id: int
    role_ids: FrozenSet[int] = field(default_factory=frozenset)
    privileged: bool = False

    def has_role(self, role_id: int) -> bool:
        return role_id in self.role_ids


class ScheduledRow(NamedTuple):
    """Minimal projection returned by recovery and sweep queries."""

    entity_id: int
    guild_id: int
    deadline: Optional[float]
