"""
Embed builders for poll, giveaway and quarantine messages.

Each ``render_*`` function is pure: it turns stored state into a
``RenderedMessage`` and never talks to Discord. Active entities get their
button row; terminal ones are rendered without components.
"""

from __future__ import annotations

import datetime
from typing import Optional, Sequence

import discord

from timecord.datatypes.entity_datatypes import Giveaway, Poll, PollResults, QuarantineEntry
from timecord.presentation.presenter import RenderedMessage
from timecord.presentation.views import GiveawayView, PollView, QuarantineView
from timecord.util.duration import format_duration

POLL_COLOR = discord.Color(0x9932CC)
GIVEAWAY_COLOR = discord.Color(0xFFD700)
QUARANTINE_COLOR = discord.Color(0xFF4500)
ENDED_COLOR = discord.Color.dark_grey()
SUCCESS_COLOR = discord.Color.green()

POLL_EMOJI = "\N{BAR CHART}"
GIVEAWAY_EMOJI = "\N{WRAPPED PRESENT}"
LOCK_EMOJI = "\N{LOCK}"
UNLOCK_EMOJI = "\N{OPEN LOCK}"
SUCCESS_EMOJI = "\N{WHITE HEAVY CHECK MARK}"

PROGRESS_CELLS = 10
FILLED_CELL = "\N{FULL BLOCK}"
EMPTY_CELL = "\N{LIGHT SHADE}"


def progress_bar(percentage: float, cells: int = PROGRESS_CELLS) -> str:
    """Ten-cell bar, e.g. ``████░░░░░░`` for 40%."""
    filled = max(0, min(cells, round(percentage / 100 * cells)))
    return FILLED_CELL * filled + EMPTY_CELL * (cells - filled)


def relative_time(timestamp: float) -> str:
    return f"<t:{int(timestamp)}:R>"


def absolute_time(timestamp: float) -> str:
    return f"<t:{int(timestamp)}:F>"


def _utc(timestamp: float) -> datetime.datetime:
    return datetime.datetime.fromtimestamp(timestamp, tz=datetime.timezone.utc)


# ==========================================
# Polls
# ==========================================

def render_poll(poll: Poll, results: PollResults) -> RenderedMessage:
    title = f"{POLL_EMOJI} {poll.question}"
    if not poll.active:
        title += " (ENDED)"

    embed = discord.Embed(
        title=title[:256],
        color=POLL_COLOR if poll.active else ENDED_COLOR,
        timestamp=_utc(poll.created_at),
    )

    for tally in results.tallies:
        embed.add_field(
            name=f"{tally.option.emoji} {tally.option.text}"[:256],
            value=f"{progress_bar(tally.percentage)} {tally.votes} vote{'s' if tally.votes != 1 else ''} "
                  f"({tally.percentage:.0f}%)",
            inline=False,
        )

    if poll.active and poll.deadline is not None:
        embed.add_field(name="Ends", value=relative_time(poll.deadline), inline=True)
    elif not poll.active:
        winners = results.winners()
        if winners:
            embed.add_field(
                name="Result",
                value=", ".join(f"{w.option.emoji} {w.option.text}" for w in winners)[:1024],
                inline=False,
            )

    footer = [f"{results.participants} participant(s)", f"{results.total_votes} vote(s)"]
    if poll.allow_multiple:
        footer.append("Multiple choice")
    if poll.anonymous:
        footer.append("Anonymous")
    if not poll.active:
        footer.append("Ended")
    embed.set_footer(text=" \N{BULLET} ".join(footer))

    return RenderedMessage(embed=embed, view=PollView(poll) if poll.active else None)


# ==========================================
# Giveaways
# ==========================================

def render_giveaway(giveaway: Giveaway, entry_emoji: str) -> RenderedMessage:
    embed = discord.Embed(
        title=f"{GIVEAWAY_EMOJI} GIVEAWAY {GIVEAWAY_EMOJI}" if giveaway.active else f"{GIVEAWAY_EMOJI} GIVEAWAY ENDED",
        description=f"**{giveaway.prize}**" + (f"\n\n{giveaway.description}" if giveaway.description else ""),
        color=GIVEAWAY_COLOR if giveaway.active else ENDED_COLOR,
        timestamp=_utc(giveaway.created_at),
    )
    embed.add_field(name="Hosted by", value=f"<@{giveaway.host_id}>", inline=True)
    embed.add_field(name="Winners", value=str(giveaway.winners_requested), inline=True)
    embed.add_field(name="Entries", value=str(giveaway.entry_count), inline=True)

    if giveaway.active:
        if giveaway.deadline is not None:
            embed.add_field(
                name="Ends",
                value=f"{relative_time(giveaway.deadline)} ({absolute_time(giveaway.deadline)})",
                inline=False,
            )
    elif giveaway.winner_user_ids:
        embed.add_field(name="Winner(s)", value=mention_list(giveaway.winner_user_ids), inline=False)
    else:
        embed.add_field(name="Winner(s)", value="No valid entries", inline=False)

    requirements = []
    if giveaway.required_role_id:
        requirements.append(f"Role: <@&{giveaway.required_role_id}>")
    if giveaway.required_level:
        requirements.append(f"Level: {giveaway.required_level}+")
    if requirements:
        embed.add_field(name="Requirements", value="\n".join(requirements), inline=False)

    embed.set_footer(text=f"Giveaway #{giveaway.id}" + ("" if giveaway.active else " \N{BULLET} Ended"))
    view = GiveawayView(giveaway, entry_emoji) if giveaway.active else None
    return RenderedMessage(embed=embed, view=view)


def render_winner_announcement(giveaway: Giveaway, rerolled: bool = False) -> RenderedMessage:
    if not giveaway.winner_user_ids:
        return RenderedMessage(
            content=f"{GIVEAWAY_EMOJI} The giveaway for **{giveaway.prize}** ended with no valid entries."
        )
    verb = "New winner(s)" if rerolled else "Congratulations"
    return RenderedMessage(
        content=f"{GIVEAWAY_EMOJI} {verb} {mention_list(giveaway.winner_user_ids)}! "
                f"You won **{giveaway.prize}**!"
    )


def render_winner_dm(giveaway: Giveaway, guild_name: Optional[str] = None) -> RenderedMessage:
    embed = discord.Embed(
        title=f"{GIVEAWAY_EMOJI} You won a giveaway!",
        description=f"You won **{giveaway.prize}**" + (f" in **{guild_name}**" if guild_name else "") + "!",
        color=GIVEAWAY_COLOR,
    )
    return RenderedMessage(embed=embed)


def mention_list(user_ids: Sequence[int]) -> str:
    return ", ".join(f"<@{uid}>" for uid in user_ids)


# ==========================================
# Quarantine
# ==========================================

def render_quarantine_log(entry: QuarantineEntry) -> RenderedMessage:
    """Mod-log card for one quarantine. Shows the remove button while active."""
    if entry.active:
        title = f"{LOCK_EMOJI} Member Quarantined"
        color = QUARANTINE_COLOR
    else:
        title = f"{UNLOCK_EMOJI} Quarantine Lifted"
        color = SUCCESS_COLOR

    embed = discord.Embed(title=title, color=color, timestamp=_utc(entry.updated_at))
    embed.add_field(name="User", value=f"<@{entry.target_id}>", inline=True)
    embed.add_field(name="Moderator", value=f"<@{entry.moderator_id}>", inline=True)
    embed.add_field(name="Reason", value=(entry.reason or "No reason provided")[:1024], inline=False)

    if entry.active:
        expiry = f"{relative_time(entry.deadline)} ({absolute_time(entry.deadline)})" if entry.deadline else "Never"
        embed.add_field(name="Expires", value=expiry, inline=False)
    elif entry.ended_by is not None:
        embed.add_field(name="Lifted by", value=f"<@{entry.ended_by}>", inline=False)
    else:
        embed.add_field(name="Lifted", value="Quarantine expired", inline=False)

    embed.set_footer(text=f"Quarantine #{entry.id}")
    return RenderedMessage(embed=embed, view=QuarantineView(entry) if entry.active else None)


def render_quarantine_dm(entry: QuarantineEntry, guild_name: Optional[str] = None) -> RenderedMessage:
    where = f" in **{guild_name}**" if guild_name else ""
    embed = discord.Embed(
        title=f"{LOCK_EMOJI} You have been quarantined",
        description=f"You have been quarantined{where}.",
        color=QUARANTINE_COLOR,
    )
    embed.add_field(name="Reason", value=(entry.reason or "No reason provided")[:1024], inline=False)
    duration = format_duration(entry.deadline - entry.created_at) if entry.deadline else "Indefinite"
    embed.add_field(name="Duration", value=duration, inline=True)
    return RenderedMessage(embed=embed)


def render_release_dm(entry: QuarantineEntry, guild_name: Optional[str] = None) -> RenderedMessage:
    where = f" in **{guild_name}**" if guild_name else ""
    reason = "has expired" if entry.ended_by is None else "was lifted by a moderator"
    embed = discord.Embed(
        title=f"{UNLOCK_EMOJI} Quarantine lifted",
        description=f"Your quarantine{where} {reason}. Your roles have been restored.",
        color=SUCCESS_COLOR,
    )
    return RenderedMessage(embed=embed)


def render_audit_entry(action: str, summary: str) -> RenderedMessage:
    embed = discord.Embed(
        title=action.replace("_", " ").title(),
        description=summary[:4096],
        color=discord.Color.blurple(),
        timestamp=datetime.datetime.now(datetime.timezone.utc),
    )
    return RenderedMessage(embed=embed)
