"""
The expiration engine.

- **timer_registry.py**: In-memory timers, one asyncio task per armed entity.
- **expiration_engine.py**: Arm, recover, sweep, process, terminate and
  reschedule for one entity kind, parameterised by an ``ExpirationEffect``.
- **effects/**: The kind-specific work done once an entity has expired.
- **events.py**: In-process publish/subscribe hub for lifecycle events.
- **errors.py**: ``LifecycleError`` and the user-facing failures derived from it.
- **runtime.py**: Explicit wiring of engines, services and the router.
"""
