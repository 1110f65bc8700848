"""
Shared plumbing for the slash-command cogs.

Command handlers only call services and raise; ``cog_app_command_error``
turns ``LifecycleError`` into an ephemeral reply carrying its
``user_message`` and logs everything else.
"""

from __future__ import annotations

from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from timecord.datatypes.lifecycle_datatypes import Actor
from timecord.lifecycle.errors import InvalidRequest, LifecycleError
from timecord.lifecycle.runtime import LifecycleRuntime
from timecord.util.discord_utils import actor_from_interaction
from timecord.util.duration import parse_duration
from timecord.util.logger import get_logger

logger = get_logger("base_commands")

GENERIC_FAILURE = "An unexpected error occurred. Please try again later."
INDEFINITE_WORDS = frozenset({"permanent", "indefinite", "none", "never"})


def parse_duration_option(text: Optional[str], *, allow_indefinite: bool = False) -> Optional[int]:
    """
    Parse a user-typed duration option.

    Returns None when ``text`` is empty or, with ``allow_indefinite``, one of
    ``permanent``/``indefinite``/``none``/``never``.
    """
    if text is None or not text.strip():
        return None
    if allow_indefinite and text.strip().lower() in INDEFINITE_WORDS:
        return None
    try:
        return parse_duration(text)
    except ValueError as exc:
        raise InvalidRequest(str(exc)) from exc


class LifecycleCommandCog(commands.Cog):
    """Base class giving command cogs the runtime, actor resolution and error replies."""

    def __init__(self, bot: commands.Bot, runtime: LifecycleRuntime) -> None:
        self.bot = bot
        self.runtime = runtime

    def actor(self, interaction: discord.Interaction) -> Actor:
        if interaction.guild_id is None:
            raise InvalidRequest("This command can only be used in a server.")
        return actor_from_interaction(interaction, self.runtime.settings.privileged_permissions)

    @staticmethod
    async def reply(interaction: discord.Interaction, content: Optional[str] = None, **kwargs) -> None:
        kwargs.setdefault("ephemeral", True)
        if interaction.response.is_done():
            await interaction.followup.send(content, **kwargs)
        else:
            await interaction.response.send_message(content, **kwargs)

    async def cog_app_command_error(
        self, interaction: discord.Interaction, error: app_commands.AppCommandError
    ) -> None:
        original = getattr(error, "original", error)
        if isinstance(original, LifecycleError):
            message = original.user_message
        else:
            command = interaction.command.qualified_name if interaction.command else "?"
            logger.error("[COMMANDS] /%s failed for user %s", command, interaction.user.id, exc_info=original)
            message = GENERIC_FAILURE

        try:
            await self.reply(interaction, message, ephemeral=True)
        except discord.HTTPException as exc:
            logger.warning("[COMMANDS] Could not send error reply: %s", exc)
