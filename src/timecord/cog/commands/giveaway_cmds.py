"""
Giveaway cog: /giveaway start, end, reroll and list.

Starting a giveaway requires Manage Server by default. Ending and rerolling
are open to the host as well as moderators; ``GiveawayService`` decides.
"""

from typing import Optional

import discord
from discord import app_commands

from timecord.cog.commands.base_cmds import LifecycleCommandCog, parse_duration_option
from timecord.lifecycle.errors import InvalidRequest
from timecord.presentation.embeds import GIVEAWAY_COLOR, GIVEAWAY_EMOJI, mention_list, relative_time
from timecord.util.logger import get_logger

logger = get_logger("giveaway_commands")


class GiveawayCog(LifecycleCommandCog):
    """Slash commands for timed giveaways."""

    giveaway_group = app_commands.Group(
        name="giveaway",
        description="Run giveaways",
        default_permissions=discord.Permissions(manage_guild=True),
        guild_only=True,
    )

    def __init__(self, bot, runtime) -> None:
        super().__init__(bot, runtime)
        logger.info("[GIVEAWAY CMDS] Giveaway cog loaded")

    @giveaway_group.command(name="start", description="Start a giveaway in this channel.")
    @app_commands.describe(
        prize="What is being given away",
        duration="How long entries stay open, e.g. 1h, 2d or 1w",
        winners="Number of winners",
        description="Extra details shown on the giveaway",
        required_role="Only members with this role may enter",
        required_level="Minimum level needed to enter",
    )
    async def start(
        self,
        interaction: discord.Interaction,
        prize: str,
        duration: str,
        winners: app_commands.Range[int, 1, 20] = 1,
        description: Optional[str] = None,
        required_role: Optional[discord.Role] = None,
        required_level: Optional[app_commands.Range[int, 1]] = None,
    ) -> None:
        actor = self.actor(interaction)
        seconds = parse_duration_option(duration)
        if seconds is None:
            raise InvalidRequest("A giveaway needs a duration.")
        await interaction.response.defer(ephemeral=True, thinking=True)

        giveaway = await self.runtime.giveaways.create_giveaway(
            actor.guild_id,
            interaction.channel_id,
            actor,
            prize,
            seconds,
            winners=winners,
            description=description,
            required_role_id=required_role.id if required_role else None,
            required_level=required_level,
        )
        await self.reply(interaction, f"{GIVEAWAY_EMOJI} Giveaway #{giveaway.id} started, ends {relative_time(giveaway.deadline)}.")

    @giveaway_group.command(name="end", description="End a giveaway now and draw the winners.")
    @app_commands.describe(giveaway_id="The giveaway number shown in the giveaway footer")
    async def end(self, interaction: discord.Interaction, giveaway_id: int) -> None:
        actor = self.actor(interaction)
        await interaction.response.defer(ephemeral=True, thinking=True)
        await self.runtime.giveaways.end_giveaway(giveaway_id, actor)
        await self.reply(interaction, f"{GIVEAWAY_EMOJI} Giveaway #{giveaway_id} has been ended.")

    @giveaway_group.command(name="reroll", description="Draw new winners for an ended giveaway.")
    @app_commands.describe(giveaway_id="The giveaway number shown in the giveaway footer")
    async def reroll(self, interaction: discord.Interaction, giveaway_id: int) -> None:
        actor = self.actor(interaction)
        await interaction.response.defer(ephemeral=True, thinking=True)
        winners = await self.runtime.giveaways.reroll(giveaway_id, actor)
        if winners:
            await self.reply(interaction, f"{GIVEAWAY_EMOJI} New winner(s): {mention_list(winners)}")
        else:
            await self.reply(interaction, f"{GIVEAWAY_EMOJI} No valid entries to draw from.")

    @giveaway_group.command(name="list", description="List running giveaways in this server.")
    async def list_active(self, interaction: discord.Interaction) -> None:
        actor = self.actor(interaction)
        giveaways = await self.runtime.giveaways.list_active(actor.guild_id)
        if not giveaways:
            await self.reply(interaction, "There are no active giveaways.")
            return

        lines = [
            f"#{g.id} · **{g.prize}** · <#{g.channel_id}> · {g.entry_count} entries · ends {relative_time(g.deadline)}"
            for g in giveaways[:25]
        ]
        embed = discord.Embed(
            title=f"{GIVEAWAY_EMOJI} Active giveaways ({len(giveaways)})",
            description="\n".join(lines),
            color=GIVEAWAY_COLOR,
        )
        await self.reply(interaction, embed=embed)


async def setup(bot) -> None:
    await bot.add_cog(GiveawayCog(bot, bot.runtime))
