"""
Keeps rendered Discord messages in step with stored entity state.

Each kind registers a renderer that returns where to render and what; the
synchronizer creates the message on first sync (persisting its
``MessageRef``) and edits it afterwards. A message deleted out-of-band is
logged and left alone: the database row stays authoritative.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from timecord.database.db_connection import ConnectionManager
from timecord.datatypes.lifecycle_datatypes import EntityKind, MessageRef
from timecord.lifecycle.errors import LifecycleError
from timecord.presentation.presenter import Presenter, RenderedMessage
from timecord.repositories.expirable_repo import ExpirableStore
from timecord.util.logger import get_logger

logger = get_logger("presentation_synchronizer")

# Returns (channel_id, message), or None when the entity has nowhere to render
Renderer = Callable[[Any], Awaitable[Optional[Tuple[int, RenderedMessage]]]]


class PresentationSynchronizer:

    def __init__(self, db: ConnectionManager, presenter: Presenter) -> None:
        self.db = db
        self.presenter = presenter
        self._renderers: Dict[EntityKind, Tuple[ExpirableStore[Any], Renderer]] = {}
        # One lock per rendered entity; every render of that message runs under it
        self._locks: Dict[Tuple[EntityKind, int], asyncio.Lock] = {}

    def register(self, kind: EntityKind, store: ExpirableStore[Any], renderer: Renderer) -> None:
        self._renderers[kind] = (store, renderer)

    def _lock_for(self, kind: EntityKind, entity_id: int) -> asyncio.Lock:
        return self._locks.setdefault((kind, entity_id), asyncio.Lock())

    async def sync(self, kind: EntityKind, entity: Any) -> Optional[MessageRef]:
        """
        Render ``entity`` and create or edit its message.

        Returns the message reference, or None when nothing was rendered.
        Never raises for Discord failures.
        """
        async with self._lock_for(kind, entity.id):
            return await self._render(kind, entity)

    async def refresh(self, kind: EntityKind, entity_id: int) -> Optional[Any]:
        """
        Re-read ``entity_id`` and render it if it is still active.

        Used after writes that leave the entity active (votes, entries,
        deadline changes). The read and the render share the entity's lock
        with the terminal render, so an entity that ended meanwhile is never
        drawn in its active form again. Returns the fresh entity, or None
        when it is gone or already terminal.
        """
        store, _ = self._renderers[kind]
        async with self._lock_for(kind, entity_id):
            async with self.db.read() as conn:
                entity = await store.fetch(conn, entity_id)
            if entity is None or not entity.active:
                return None
            await self._render(kind, entity)
            return entity

    async def _render(self, kind: EntityKind, entity: Any) -> Optional[MessageRef]:
        store, renderer = self._renderers[kind]

        target = await renderer(entity)
        if target is None:
            return None
        channel_id, message = target

        try:
            ref = await self.presenter.render_or_update(entity.render_ref, channel_id, message)
        except LifecycleError as exc:
            logger.warning("[SYNC] Could not render %s #%s: %s", kind, entity.id, exc.user_message)
            return None

        if ref != entity.render_ref:
            async with self.db.transaction() as conn:
                await store.set_render_ref(conn, entity.id, ref)
            entity.render_ref = ref
        return ref
