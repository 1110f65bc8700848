"""
Effect run when a quarantine expires or is lifted by a moderator.
"""

from __future__ import annotations

from typing import List

from timecord.database.db_connection import ConnectionManager
from timecord.datatypes.entity_datatypes import QuarantineEntry
from timecord.datatypes.lifecycle_datatypes import Actor, EntityKind, ExpirationContext, ExpirationReason
from timecord.lifecycle.errors import LifecycleError
from timecord.presentation.embeds import render_release_dm
from timecord.presentation.presenter import Presenter
from timecord.presentation.synchronizer import PresentationSynchronizer
from timecord.repositories.guild_settings_repo import GuildSettingsRepo
from timecord.services.audit_service import AuditAction, AuditService
from timecord.util.logger import get_logger

logger = get_logger("quarantine_effect")


def restorable_roles(previous_roles: List[int], existing_roles: set, *, guild_id: int, quarantine_role_id: int | None) -> List[int]:
    """
    Roles from the snapshot that can be granted back.

    Drops roles deleted from the guild since the snapshot, the everyone-role
    and the quarantine role itself. Snapshot order is kept.
    """
    return [
        role_id
        for role_id in previous_roles
        if role_id in existing_roles and role_id != guild_id and role_id != quarantine_role_id
    ]


class QuarantineEffect:
    """Restores the member's roles, removes the quarantine role, notifies and audits."""

    kind = EntityKind.QUARANTINE

    def __init__(
        self,
        db: ConnectionManager,
        presenter: Presenter,
        synchronizer: PresentationSynchronizer,
        audit: AuditService,
        *,
        notify_user: bool = True,
    ) -> None:
        self.db = db
        self.presenter = presenter
        self.synchronizer = synchronizer
        self.audit = audit
        self.notify_user = notify_user
        self.settings_repo = GuildSettingsRepo()

    def can_terminate(self, entity: QuarantineEntry, actor: Actor) -> bool:
        return actor.privileged

    async def apply(self, entity: QuarantineEntry, context: ExpirationContext) -> None:
        failed: List[str] = []
        restored: List[int] = []
        reason = "Quarantine expired" if context.reason is ExpirationReason.EXPIRED else "Quarantine lifted"

        async with self.db.read() as conn:
            settings = await self.settings_repo.get(conn, entity.guild_id)

        try:
            existing = await self.presenter.guild_role_ids(entity.guild_id)
            restored = restorable_roles(
                entity.previous_roles,
                existing,
                guild_id=entity.guild_id,
                quarantine_role_id=settings.quarantine_role_id,
            )
            await self.presenter.grant_roles(entity.guild_id, entity.target_id, restored, reason)
        except LifecycleError as exc:
            logger.warning("[QUARANTINE] Role restore failed for entry #%s: %s", entity.id, exc.user_message)
            failed.append("restore_roles")
            restored = []

        if settings.quarantine_role_id:
            try:
                await self.presenter.revoke_roles(
                    entity.guild_id, entity.target_id, [settings.quarantine_role_id], reason
                )
            except LifecycleError as exc:
                logger.warning("[QUARANTINE] Could not remove quarantine role for entry #%s: %s", entity.id, exc.user_message)
                failed.append("revoke_quarantine_role")

        if self.notify_user and not await self.presenter.notify_direct(entity.target_id, render_release_dm(entity)):
            failed.append("notify_direct")

        has_card = entity.render_ref is not None or settings.log_channel_id
        if await self.synchronizer.sync(EntityKind.QUARANTINE, entity) is None and has_card:
            failed.append("render")

        action = AuditAction.QUARANTINE_EXPIRED if context.reason is ExpirationReason.EXPIRED else AuditAction.QUARANTINE_REMOVE
        await self.audit.record(
            entity.guild_id,
            action,
            EntityKind.QUARANTINE,
            entity.id,
            actor_id=context.actor_id,
            target_id=entity.target_id,
            details={"restored_roles": restored, "failed_effects": failed},
        )
