"""
Poll cog: /poll create, /poll end and /poll list.

Voting happens through the buttons on the poll message, not through a
command; see ``InteractionRouterCog``.
"""

from typing import Optional

import discord
from discord import app_commands

from timecord.cog.commands.base_cmds import LifecycleCommandCog, parse_duration_option
from timecord.presentation.embeds import POLL_COLOR, POLL_EMOJI, relative_time
from timecord.util.logger import get_logger

logger = get_logger("poll_commands")


def split_options(text: str) -> list:
    """Split a comma-separated option string, dropping empty entries."""
    return [part.strip() for part in text.split(",") if part.strip()]


class PollCog(LifecycleCommandCog):
    """Slash commands for timed polls."""

    poll_group = app_commands.Group(
        name="poll",
        description="Create and manage polls",
        guild_only=True,
    )

    def __init__(self, bot, runtime) -> None:
        super().__init__(bot, runtime)
        logger.info("[POLL CMDS] Poll cog loaded")

    @poll_group.command(name="create", description="Create a poll with up to ten options.")
    @app_commands.describe(
        question="The question to ask",
        options="Options separated by commas",
        duration="How long the poll runs, e.g. 30m, 2h or 1d. Leave empty for no end.",
        multiple="Allow members to pick more than one option",
        anonymous="Hide who voted for what",
    )
    async def create(
        self,
        interaction: discord.Interaction,
        question: str,
        options: str,
        duration: Optional[str] = None,
        multiple: bool = False,
        anonymous: bool = False,
    ) -> None:
        actor = self.actor(interaction)
        seconds = parse_duration_option(duration)
        await interaction.response.defer(ephemeral=True, thinking=True)

        poll = await self.runtime.polls.create_poll(
            actor.guild_id,
            interaction.channel_id,
            actor,
            question,
            split_options(options),
            duration_seconds=seconds,
            allow_multiple=multiple,
            anonymous=anonymous,
        )
        await self.reply(interaction, f"{POLL_EMOJI} Poll #{poll.id} created.")

    @poll_group.command(name="end", description="End a poll early and publish the results.")
    @app_commands.describe(poll_id="The poll number shown in the poll footer")
    async def end(self, interaction: discord.Interaction, poll_id: int) -> None:
        actor = self.actor(interaction)
        await interaction.response.defer(ephemeral=True, thinking=True)
        await self.runtime.polls.end_poll(poll_id, actor)
        await self.reply(interaction, f"{POLL_EMOJI} Poll #{poll_id} has been ended.")

    @poll_group.command(name="list", description="List running polls in this server.")
    async def list_active(self, interaction: discord.Interaction) -> None:
        actor = self.actor(interaction)
        polls = await self.runtime.polls.list_active(actor.guild_id)
        if not polls:
            await self.reply(interaction, "There are no active polls.")
            return

        lines = []
        for poll in polls[:25]:
            ends = relative_time(poll.deadline) if poll.deadline else "when ended"
            where = f"<#{poll.render_ref.channel_id}>" if poll.render_ref else f"<#{poll.channel_id}>"
            lines.append(f"#{poll.id} · {poll.question} · {where} · ends {ends}")

        embed = discord.Embed(
            title=f"{POLL_EMOJI} Active polls ({len(polls)})",
            description="\n".join(lines),
            color=POLL_COLOR,
        )
        await self.reply(interaction, embed=embed)


async def setup(bot) -> None:
    await bot.add_cog(PollCog(bot, bot.runtime))
