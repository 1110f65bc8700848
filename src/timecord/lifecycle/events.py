"""
In-process publish/subscribe hub for lifecycle events.

Services emit an event after every state change; subscribers (audit
loggers, dashboards, tests) react without being able to fail the emitting
operation.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from timecord.datatypes.lifecycle_datatypes import EntityKind
from timecord.util.logger import get_logger

logger = get_logger("lifecycle_events")


class EventType(Enum):
    CREATED = "created"
    EXPIRED = "expired"
    ENDED = "ended"
    VOTED = "voted"
    ENTERED = "entered"
    REROLLED = "rerolled"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True, slots=True)
class LifecycleEvent:
    type: EventType
    kind: EntityKind
    guild_id: int
    entity_id: int
    actor_id: Optional[int] = None
    payload: Dict[str, Any] = field(default_factory=dict)


EventHandler = Callable[[LifecycleEvent], Awaitable[None]]


class LifecycleEvents:
    """Fan-out of ``LifecycleEvent`` objects to async handlers."""

    def __init__(self) -> None:
        self._handlers: Dict[EventType, List[EventHandler]] = {}

    def subscribe(self, event_type: EventType, handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: EventType, handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    async def emit(self, event: LifecycleEvent) -> None:
        """Call every handler for ``event.type`` in subscription order."""
        for handler in list(self._handlers.get(event.type, ())):
            try:
                await handler(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "[EVENTS] Handler %r failed for %s %s #%s",
                    handler, event.type, event.kind, event.entity_id,
                )
