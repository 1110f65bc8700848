"""
Button rows attached to lifecycle messages.

The buttons carry stable custom ids and no callbacks of their own: every
press is routed by ``InteractionRouterCog`` through ``InteractionRouter``,
so the views can be rebuilt from stored state at any time (including after
a restart) and still work.

Custom id grammar::

    timecord:poll:vote:<poll_id>:<option_id>
    timecord:poll:end:<poll_id>
    timecord:giveaway:enter:<giveaway_id>
    timecord:giveaway:end:<giveaway_id>
    timecord:quarantine:remove:<entry_id>
"""

from __future__ import annotations

from typing import List

import discord

from timecord.datatypes.entity_datatypes import Giveaway, Poll, QuarantineEntry

CUSTOM_ID_PREFIX = "timecord"
BUTTONS_PER_ROW = 5
MAX_ROWS = 5


def poll_vote_id(poll_id: int, option_id: int) -> str:
    return f"{CUSTOM_ID_PREFIX}:poll:vote:{poll_id}:{option_id}"


def poll_end_id(poll_id: int) -> str:
    return f"{CUSTOM_ID_PREFIX}:poll:end:{poll_id}"


def giveaway_enter_id(giveaway_id: int) -> str:
    return f"{CUSTOM_ID_PREFIX}:giveaway:enter:{giveaway_id}"


def giveaway_end_id(giveaway_id: int) -> str:
    return f"{CUSTOM_ID_PREFIX}:giveaway:end:{giveaway_id}"


def quarantine_remove_id(entry_id: int) -> str:
    return f"{CUSTOM_ID_PREFIX}:quarantine:remove:{entry_id}"


def _truncate(label: str, limit: int = 80) -> str:
    return label if len(label) <= limit else label[: limit - 1] + "\N{HORIZONTAL ELLIPSIS}"


class PollView(discord.ui.View):
    """One vote button per option, five per row, followed by an End Poll button."""

    def __init__(self, poll: Poll) -> None:
        super().__init__(timeout=None)
        buttons: List[discord.ui.Button] = []
        for index, option in enumerate(poll.options):
            buttons.append(
                discord.ui.Button(
                    style=discord.ButtonStyle.secondary,
                    label=_truncate(option.text),
                    emoji=option.emoji,
                    custom_id=poll_vote_id(poll.id, option.id),
                    row=index // BUTTONS_PER_ROW,
                )
            )
        for button in buttons:
            self.add_item(button)

        end_row = min((len(poll.options) + BUTTONS_PER_ROW - 1) // BUTTONS_PER_ROW, MAX_ROWS - 1)
        self.add_item(
            discord.ui.Button(
                style=discord.ButtonStyle.danger,
                label="End Poll",
                custom_id=poll_end_id(poll.id),
                row=end_row,
            )
        )


class GiveawayView(discord.ui.View):
    """Enter button showing the live entry count, plus an End button."""

    def __init__(self, giveaway: Giveaway, entry_emoji: str) -> None:
        super().__init__(timeout=None)
        self.add_item(
            discord.ui.Button(
                style=discord.ButtonStyle.primary,
                label=f"Enter Giveaway ({giveaway.entry_count})",
                emoji=entry_emoji,
                custom_id=giveaway_enter_id(giveaway.id),
            )
        )
        self.add_item(
            discord.ui.Button(
                style=discord.ButtonStyle.danger,
                label="End",
                custom_id=giveaway_end_id(giveaway.id),
            )
        )


class QuarantineView(discord.ui.View):
    def __init__(self, entry: QuarantineEntry) -> None:
        super().__init__(timeout=None)
        self.add_item(
            discord.ui.Button(
                style=discord.ButtonStyle.success,
                label="Remove Quarantine",
                emoji="\N{OPEN LOCK}",
                custom_id=quarantine_remove_id(entry.id),
            )
        )
