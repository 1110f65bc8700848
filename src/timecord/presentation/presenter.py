"""
Presentation collaborator: everything the lifecycle code asks Discord to do.

Services and effects talk to the ``Presenter`` protocol only, so tests can
substitute a recording fake and the engine never touches ``discord`` types
directly. ``DiscordPresenter`` is the production implementation.

Error policy: every method converts ``discord.HTTPException`` (including
``NotFound`` and ``Forbidden``) into ``UpstreamUnavailable``, except the
best-effort ``post`` and ``notify_direct`` which log and return a sentinel.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol, Set

import discord

from timecord.datatypes.lifecycle_datatypes import MessageRef
from timecord.lifecycle.errors import EntityNotFound, UpstreamUnavailable
from timecord.util.logger import get_logger

logger = get_logger("presenter")

QUARANTINE_ROLE_NAME = "Quarantined"
QUARANTINE_ROLE_COLOR = discord.Color(0xFF4500)

# Permissions denied to the quarantine role in every text and voice channel
QUARANTINE_OVERWRITE = discord.PermissionOverwrite(
    send_messages=False,
    add_reactions=False,
    send_messages_in_threads=False,
    create_public_threads=False,
    create_private_threads=False,
    speak=False,
    stream=False,
    use_voice_activation=False,
    connect=False,
)


@dataclass(slots=True)
class RenderedMessage:
    """A message ready to send or edit. ``view=None`` strips components."""

    content: Optional[str] = None
    embed: Optional[discord.Embed] = None
    view: Optional[discord.ui.View] = None


class Presenter(Protocol):
    async def render_or_update(
        self, ref: Optional[MessageRef], channel_id: int, message: RenderedMessage
    ) -> MessageRef: ...

    async def post(self, channel_id: int, message: RenderedMessage) -> Optional[MessageRef]: ...

    async def notify_direct(self, user_id: int, message: RenderedMessage) -> bool: ...

    async def grant_roles(self, guild_id: int, user_id: int, role_ids: Iterable[int], reason: str) -> None: ...

    async def revoke_roles(self, guild_id: int, user_id: int, role_ids: Iterable[int], reason: str) -> None: ...

    async def replace_roles(self, guild_id: int, user_id: int, role_ids: Iterable[int], reason: str) -> None: ...

    async def member_role_ids(self, guild_id: int, user_id: int) -> Optional[List[int]]: ...

    async def guild_role_ids(self, guild_id: int) -> Set[int]: ...

    async def create_quarantine_role(self, guild_id: int, reason: str) -> int: ...


class DiscordPresenter:
    """``Presenter`` backed by a connected ``discord.Client``."""

    def __init__(self, client: discord.Client) -> None:
        self.client = client

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def render_or_update(
        self, ref: Optional[MessageRef], channel_id: int, message: RenderedMessage
    ) -> MessageRef:
        """Edit the message at ``ref``, or send a new one to ``channel_id`` when ``ref`` is None."""
        try:
            if ref is not None:
                partial = self.client.get_partial_messageable(ref.channel_id).get_partial_message(ref.message_id)
                await partial.edit(content=message.content, embed=message.embed, view=message.view)
                return ref

            channel = self.client.get_partial_messageable(channel_id)
            sent = await channel.send(**self._send_kwargs(message))
            return MessageRef(channel_id=channel_id, message_id=sent.id)
        except discord.HTTPException as exc:
            raise UpstreamUnavailable(f"Could not render message in <#{channel_id}>: {exc}") from exc

    async def post(self, channel_id: int, message: RenderedMessage) -> Optional[MessageRef]:
        try:
            sent = await self.client.get_partial_messageable(channel_id).send(**self._send_kwargs(message))
        except discord.HTTPException as exc:
            logger.warning("[PRESENTER] Failed to post in channel %s: %s", channel_id, exc)
            return None
        return MessageRef(channel_id=channel_id, message_id=sent.id)

    async def notify_direct(self, user_id: int, message: RenderedMessage) -> bool:
        """Best-effort DM. Closed DMs and unknown users return False."""
        try:
            user = self.client.get_user(user_id) or await self.client.fetch_user(user_id)
            await user.send(**self._send_kwargs(message))
        except discord.HTTPException as exc:
            logger.debug("[PRESENTER] Could not DM user %s: %s", user_id, exc)
            return False
        return True

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    async def grant_roles(self, guild_id: int, user_id: int, role_ids: Iterable[int], reason: str) -> None:
        roles = [discord.Object(id=r) for r in role_ids]
        if not roles:
            return
        member = await self._member(guild_id, user_id)
        try:
            await member.add_roles(*roles, reason=reason)
        except discord.HTTPException as exc:
            raise UpstreamUnavailable(f"Could not grant roles: {exc}") from exc

    async def revoke_roles(self, guild_id: int, user_id: int, role_ids: Iterable[int], reason: str) -> None:
        roles = [discord.Object(id=r) for r in role_ids]
        if not roles:
            return
        member = await self._member(guild_id, user_id)
        try:
            await member.remove_roles(*roles, reason=reason)
        except discord.HTTPException as exc:
            raise UpstreamUnavailable(f"Could not revoke roles: {exc}") from exc

    async def replace_roles(self, guild_id: int, user_id: int, role_ids: Iterable[int], reason: str) -> None:
        """Set the member's roles to ``role_ids``. Managed roles cannot be removed and are kept."""
        member = await self._member(guild_id, user_id)
        keep = [r for r in member.roles if r.managed]
        wanted = [discord.Object(id=r) for r in role_ids]
        try:
            await member.edit(roles=[*keep, *wanted], reason=reason)
        except discord.HTTPException as exc:
            raise UpstreamUnavailable(f"Could not replace roles: {exc}") from exc

    async def member_role_ids(self, guild_id: int, user_id: int) -> Optional[List[int]]:
        """Role ids of the member (everyone-role excluded), or None if not in the guild."""
        try:
            member = await self._member(guild_id, user_id)
        except EntityNotFound:
            return None
        return [role.id for role in member.roles if role.id != guild_id]

    async def guild_role_ids(self, guild_id: int) -> Set[int]:
        guild = self._guild(guild_id)
        return {role.id for role in guild.roles}

    async def create_quarantine_role(self, guild_id: int, reason: str) -> int:
        """
        Create the quarantine role and deny it on every text, voice and stage channel.

        Channel overwrite failures are logged per channel; the role itself
        must be created or ``UpstreamUnavailable`` is raised.
        """
        guild = self._guild(guild_id)
        try:
            role = await guild.create_role(
                name=QUARANTINE_ROLE_NAME,
                color=QUARANTINE_ROLE_COLOR,
                permissions=discord.Permissions.none(),
                reason=reason,
            )
        except discord.HTTPException as exc:
            raise UpstreamUnavailable(f"Could not create the quarantine role: {exc}") from exc

        for channel in guild.channels:
            if not isinstance(channel, (discord.TextChannel, discord.VoiceChannel, discord.StageChannel, discord.ForumChannel)):
                continue
            try:
                await channel.set_permissions(role, overwrite=QUARANTINE_OVERWRITE, reason=reason)
            except discord.HTTPException as exc:
                logger.warning("[PRESENTER] Could not set quarantine overwrite on #%s: %s", channel.name, exc)

        logger.info("[PRESENTER] Created quarantine role %s in guild %s", role.id, guild_id)
        return role.id

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _guild(self, guild_id: int) -> discord.Guild:
        guild = self.client.get_guild(guild_id)
        if guild is None:
            raise UpstreamUnavailable(f"Guild {guild_id} is not available.")
        return guild

    async def _member(self, guild_id: int, user_id: int) -> discord.Member:
        guild = self._guild(guild_id)
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user_id)
        except discord.NotFound as exc:
            raise EntityNotFound("That member is not in this server.") from exc
        except discord.HTTPException as exc:
            raise UpstreamUnavailable(f"Could not fetch member {user_id}: {exc}") from exc

    @staticmethod
    def _send_kwargs(message: RenderedMessage) -> dict:
        kwargs: dict = {}
        if message.content is not None:
            kwargs["content"] = message.content
        if message.embed is not None:
            kwargs["embed"] = message.embed
        if message.view is not None:
            kwargs["view"] = message.view
        return kwargs
