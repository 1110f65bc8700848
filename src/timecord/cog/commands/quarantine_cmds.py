"""
Quarantine cog: the /quarantine command group.

Subcommands:
- setup / logchannel: one-time guild configuration
- add / remove / duration: sanction lifecycle
- status / history / list: read-only views

Every subcommand requires a moderator permission by default; the services
re-check the privileged flag so a server-side permission override cannot
widen access.
"""

from typing import Optional

import discord
from discord import app_commands

from timecord.cog.commands.base_cmds import LifecycleCommandCog, parse_duration_option
from timecord.datatypes.entity_datatypes import QuarantineEntry
from timecord.presentation.embeds import LOCK_EMOJI, QUARANTINE_COLOR, UNLOCK_EMOJI, absolute_time, relative_time
from timecord.util.logger import get_logger

logger = get_logger("quarantine_commands")


def describe_entry(entry: QuarantineEntry) -> str:
    expiry = relative_time(entry.deadline) if entry.deadline else "never"
    state = "active" if entry.active else "lifted"
    return f"#{entry.id} · {absolute_time(entry.created_at)} · {state} · expires {expiry} · {entry.reason or 'No reason'}"


class QuarantineCog(LifecycleCommandCog):
    """Slash commands for timed quarantines."""

    quarantine_group = app_commands.Group(
        name="quarantine",
        description="Quarantine members and manage active quarantines",
        default_permissions=discord.Permissions(moderate_members=True),
        guild_only=True,
    )

    def __init__(self, bot, runtime) -> None:
        super().__init__(bot, runtime)
        logger.info("[QUARANTINE CMDS] Quarantine cog loaded")

    @property
    def service(self):
        return self.runtime.quarantine

    @quarantine_group.command(name="setup", description="Create the quarantine role and lock it out of every channel.")
    async def setup_role(self, interaction: discord.Interaction) -> None:
        actor = self.actor(interaction)
        await interaction.response.defer(ephemeral=True, thinking=True)
        role_id = await self.service.setup_role(actor.guild_id, actor)
        await self.reply(interaction, f"{LOCK_EMOJI} Quarantine role <@&{role_id}> is ready.")

    @quarantine_group.command(name="logchannel", description="Set or clear the channel for quarantine logs.")
    @app_commands.describe(channel="Channel for quarantine cards and audit messages; leave empty to clear.")
    async def log_channel(
        self, interaction: discord.Interaction, channel: Optional[discord.TextChannel] = None
    ) -> None:
        actor = self.actor(interaction)
        await self.service.set_log_channel(actor.guild_id, channel.id if channel else None, actor)
        if channel:
            await self.reply(interaction, f"Quarantine logs will be posted in {channel.mention}.")
        else:
            await self.reply(interaction, "Quarantine log channel cleared.")

    @quarantine_group.command(name="add", description="Quarantine a member.")
    @app_commands.describe(
        member="Member to quarantine",
        duration="How long, e.g. 30m, 2h, 3d or 1h30m. Use 'permanent' for no end.",
        reason="Why the member is being quarantined",
        notify="Send the member a direct message (defaults to the server setting)",
    )
    async def add(
        self,
        interaction: discord.Interaction,
        member: discord.Member,
        duration: Optional[str] = None,
        reason: Optional[str] = None,
        notify: Optional[bool] = None,
    ) -> None:
        actor = self.actor(interaction)
        if duration is None:
            seconds = self.service.limits.default_duration_seconds
        else:
            seconds = parse_duration_option(duration, allow_indefinite=True)

        await interaction.response.defer(ephemeral=True, thinking=True)
        entry = await self.service.quarantine(
            actor.guild_id,
            member.id,
            actor,
            reason=reason or "",
            duration_seconds=seconds,
            notify=notify,
        )
        expiry = relative_time(entry.deadline) if entry.deadline else "never"
        await self.reply(interaction, f"{LOCK_EMOJI} {member.mention} has been quarantined (#{entry.id}, expires {expiry}).")

    @quarantine_group.command(name="remove", description="Lift a member's quarantine.")
    @app_commands.describe(member="Member to release")
    async def remove(self, interaction: discord.Interaction, member: discord.Member) -> None:
        actor = self.actor(interaction)
        await interaction.response.defer(ephemeral=True, thinking=True)
        await self.service.remove_member(actor.guild_id, member.id, actor)
        await self.reply(interaction, f"{UNLOCK_EMOJI} {member.mention} has been released from quarantine.")

    @quarantine_group.command(name="duration", description="Change how long a quarantine lasts, counted from now.")
    @app_commands.describe(member="Quarantined member", duration="New duration, or 'permanent'")
    async def duration(self, interaction: discord.Interaction, member: discord.Member, duration: str) -> None:
        actor = self.actor(interaction)
        seconds = parse_duration_option(duration, allow_indefinite=True)
        entry = await self.service.status(actor.guild_id, member.id)
        if entry is None:
            await self.reply(interaction, f"{member.mention} is not quarantined.")
            return

        deadline = await self.service.change_duration(entry.id, seconds, actor)
        expiry = relative_time(deadline) if deadline else "never"
        await self.reply(interaction, f"{LOCK_EMOJI} Quarantine of {member.mention} now expires {expiry}.")

    @quarantine_group.command(name="status", description="Show whether a member is quarantined.")
    @app_commands.describe(member="Member to check")
    async def status(self, interaction: discord.Interaction, member: discord.Member) -> None:
        actor = self.actor(interaction)
        entry = await self.service.status(actor.guild_id, member.id)
        if entry is None:
            await self.reply(interaction, f"{member.mention} is not quarantined.")
            return

        embed = discord.Embed(title=f"{LOCK_EMOJI} Quarantine #{entry.id}", color=QUARANTINE_COLOR)
        embed.add_field(name="User", value=member.mention, inline=True)
        embed.add_field(name="Moderator", value=f"<@{entry.moderator_id}>", inline=True)
        embed.add_field(name="Since", value=relative_time(entry.created_at), inline=True)
        embed.add_field(name="Expires", value=relative_time(entry.deadline) if entry.deadline else "Never", inline=True)
        embed.add_field(name="Reason", value=entry.reason or "No reason provided", inline=False)
        await self.reply(interaction, embed=embed)

    @quarantine_group.command(name="history", description="Show a member's recent quarantines.")
    @app_commands.describe(member="Member to look up")
    async def history(self, interaction: discord.Interaction, member: discord.Member) -> None:
        actor = self.actor(interaction)
        entries = await self.service.history(actor.guild_id, member.id)
        if not entries:
            await self.reply(interaction, f"{member.mention} has no quarantine history.")
            return

        embed = discord.Embed(
            title=f"Quarantine history for {member.display_name}",
            description="\n".join(describe_entry(entry) for entry in entries),
            color=QUARANTINE_COLOR,
        )
        await self.reply(interaction, embed=embed)

    @quarantine_group.command(name="list", description="List active quarantines in this server.")
    async def list_active(self, interaction: discord.Interaction) -> None:
        actor = self.actor(interaction)
        entries = await self.service.list_active(actor.guild_id)
        if not entries:
            await self.reply(interaction, "No members are quarantined.")
            return

        lines = [
            f"<@{entry.target_id}> · #{entry.id} · expires "
            f"{relative_time(entry.deadline) if entry.deadline else 'never'}"
            for entry in entries[:25]
        ]
        embed = discord.Embed(
            title=f"{LOCK_EMOJI} Active quarantines ({len(entries)})",
            description="\n".join(lines),
            color=QUARANTINE_COLOR,
        )
        await self.reply(interaction, embed=embed)


async def setup(bot) -> None:
    await bot.add_cog(QuarantineCog(bot, bot.runtime))
