"""
Listener cog that answers button presses on lifecycle messages.

The buttons attached to poll, giveaway and quarantine messages carry no
callbacks; their custom ids survive restarts and are routed here through
``on_interaction`` to ``InteractionRouter``.
"""

import discord
from discord.ext import commands

from timecord.lifecycle.errors import LifecycleError
from timecord.lifecycle.runtime import LifecycleRuntime
from timecord.presentation.views import CUSTOM_ID_PREFIX
from timecord.util.discord_utils import actor_from_interaction
from timecord.util.logger import get_logger

logger = get_logger("interaction_router_cog")

GENERIC_FAILURE = "Something went wrong while handling that button. Please try again."


class InteractionRouterCog(commands.Cog):
    """Routes ``timecord:*`` component interactions."""

    def __init__(self, bot: commands.Bot, runtime: LifecycleRuntime) -> None:
        self.bot = bot
        self.runtime = runtime
        logger.info("[INTERACTION ROUTER] Interaction router cog loaded")

    @commands.Cog.listener()
    async def on_interaction(self, interaction: discord.Interaction) -> None:
        if interaction.type != discord.InteractionType.component:
            return
        custom_id = (interaction.data or {}).get("custom_id", "")
        if not custom_id.startswith(f"{CUSTOM_ID_PREFIX}:"):
            return

        if interaction.guild_id is None:
            await interaction.response.send_message("This button only works inside a server.", ephemeral=True)
            return

        # Rendering and role changes can outlast the 3 second response window
        await interaction.response.defer(ephemeral=True, thinking=True)

        actor = actor_from_interaction(interaction, self.runtime.settings.privileged_permissions)
        try:
            reply = await self.runtime.router.dispatch(custom_id, actor)
        except LifecycleError as exc:
            reply = exc.user_message
        except Exception:
            logger.exception("[INTERACTION ROUTER] Failed to handle %r for user %s", custom_id, actor.user_id)
            reply = GENERIC_FAILURE

        try:
            await interaction.followup.send(reply, ephemeral=True)
        except discord.HTTPException as exc:
            logger.warning("[INTERACTION ROUTER] Could not reply to %s: %s", actor.user_id, exc)


async def setup(bot) -> None:
    await bot.add_cog(InteractionRouterCog(bot, bot.runtime))
