"""
Discord helpers shared by the command and listener cogs.
"""

from __future__ import annotations

from typing import Iterable, Union

import discord

from timecord.datatypes.lifecycle_datatypes import Actor


def has_elevated_permissions(
    member: Union[discord.User, discord.Member],
    permission_names: Iterable[str],
) -> bool:
    """
    Check if a member holds any of the named guild permissions.

    Args:
        member (discord.User | discord.Member): The member to evaluate.
        permission_names (Iterable[str]): ``discord.Permissions`` attribute names,
            e.g. ``manage_messages`` or ``administrator``.

    Returns:
        bool: True if the member has at least one of them, False otherwise
        (including when ``member`` is not a guild member).
    """
    if not isinstance(member, discord.Member):
        return False

    perms = member.guild_permissions
    return any(getattr(perms, name, False) for name in permission_names)


def actor_from_interaction(interaction: discord.Interaction, permission_names: Iterable[str]) -> Actor:
    """Build the ``Actor`` for whoever triggered ``interaction`` inside a guild."""
    user = interaction.user
    role_ids = frozenset(role.id for role in getattr(user, "roles", ()))
    return Actor(
        user_id=user.id,
        guild_id=interaction.guild_id or 0,
        role_ids=role_ids,
        privileged=has_elevated_permissions(user, permission_names),
    )
