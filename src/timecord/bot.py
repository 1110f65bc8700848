"""
The Discord client that hosts the lifecycle runtime.

``TimecordBot`` builds the runtime around an already open database, hands it
to every cog, and syncs the application command tree once the cogs are in.
"""

from __future__ import annotations

import random
from typing import Optional

import discord
from discord.ext import commands

from timecord.configuration.app_configuration import AppConfig
from timecord.database.db_connection import ConnectionManager
from timecord.lifecycle.runtime import LifecycleRuntime, build_runtime
from timecord.presentation.presenter import DiscordPresenter
from timecord.util.logger import get_logger

logger = get_logger("bot")

EXTENSIONS = (
    "timecord.cog.listener.lifecycle_cog",
    "timecord.cog.listener.interaction_router_cog",
    "timecord.cog.commands.quarantine_cmds",
    "timecord.cog.commands.poll_cmds",
    "timecord.cog.commands.giveaway_cmds",
)


class TimecordBot(commands.Bot):
    """Bot subclass that owns the ``LifecycleRuntime`` for one process."""

    def __init__(
        self,
        config: AppConfig,
        db: ConnectionManager,
        *,
        intents: discord.Intents,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(command_prefix=commands.when_mentioned, intents=intents)
        self.config = config
        self.db = db
        self.runtime: LifecycleRuntime = build_runtime(
            db, DiscordPresenter(self), config.lifecycle_settings(), rng=rng
        )

    async def setup_hook(self) -> None:
        for extension in EXTENSIONS:
            await self.load_extension(extension)
        logger.info("All cogs loaded successfully.")

        synced = await self.tree.sync()
        logger.info("Synced %d application command(s)", len(synced))

    async def on_ready(self) -> None:
        logger.info("Logged in as %s (%s) in %d guild(s)", self.user, getattr(self.user, "id", "?"), len(self.guilds))
