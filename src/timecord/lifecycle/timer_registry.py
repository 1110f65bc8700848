"""
In-memory single-fire timers keyed by entity id.

The registry is a volatile cache over the store: losing every timer (for
example on restart) only delays expirations until the recovery scan or the
sweep loop notices them. It is never consulted to decide whether an entity
is active.
"""

import asyncio
import time
from typing import Awaitable, Callable, Dict

from timecord.util.logger import get_logger

logger = get_logger("timer_registry")

TimerCallback = Callable[[int], Awaitable[object]]
Clock = Callable[[], float]


class TimerRegistry:
    """
    One ``asyncio.Task`` per armed entity.

    Each task sleeps until its ``fire_at`` (unix seconds, measured against
    ``clock`` when the timer is armed) and then awaits ``callback(entity_id)``.
    Arming an id that already has a timer replaces it. A firing task removes
    itself from the map before the callback runs, so the callback may call
    ``cancel`` for its own id without cancelling itself.

    All methods must be called from the event loop thread.
    """

    def __init__(self, name: str, clock: Clock = time.time) -> None:
        self.name = name
        self._clock = clock
        self._timers: Dict[int, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._timers)

    def __contains__(self, entity_id: int) -> bool:
        return self.pending(entity_id)

    def pending(self, entity_id: int) -> bool:
        task = self._timers.get(entity_id)
        return task is not None and not task.done()

    def arm(self, entity_id: int, fire_at: float, callback: TimerCallback) -> None:
        """
        Schedule ``callback(entity_id)`` for ``fire_at``.

        The delay is taken from the clock at arm time. A ``fire_at`` in the
        past fires on the next loop iteration.
        """
        self.cancel(entity_id)
        delay = max(0.0, fire_at - self._clock())
        loop = asyncio.get_running_loop()
        task = loop.create_task(
            self._run(entity_id, delay, callback),
            name=f"timecord-{self.name}-timer-{entity_id}",
        )
        self._timers[entity_id] = task

    def cancel(self, entity_id: int) -> bool:
        """Cancel the timer for ``entity_id``. Returns False when none was armed."""
        task = self._timers.pop(entity_id, None)
        if task is None:
            return False
        if not task.done():
            task.cancel()
        return True

    async def shutdown(self) -> None:
        """Cancel every pending timer and wait for the tasks to finish."""
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("[TIMERS] %s registry shut down (%d timers cancelled)", self.name, len(tasks))

    async def _run(self, entity_id: int, delay: float, callback: TimerCallback) -> None:
        await asyncio.sleep(delay)

        if self._timers.get(entity_id) is asyncio.current_task():
            del self._timers[entity_id]

        try:
            await callback(entity_id)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[TIMERS] %s timer callback failed for #%s", self.name, entity_id)
