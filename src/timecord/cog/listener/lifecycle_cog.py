"""Background lifecycle cog for Timecord.

Drives the parts of the expiration engine that are not triggered by users:
- startup recovery: re-arms timers for every guild the first time the bot is ready
- guild join: re-arms timers for a newly visible guild
- sweep loop: processes overdue rows a timer may have missed
- retention loop: purges inactive rows older than the retention window
"""

from __future__ import annotations

import asyncio

import discord
from discord.ext import commands, tasks

from timecord.lifecycle.runtime import LifecycleRuntime
from timecord.util.logger import get_logger

logger = get_logger("lifecycle_cog")


class LifecycleSchedulerCog(commands.Cog):
    """
    Keeps stored deadlines and in-memory timers in step.

    Timers are the fast path; the sweep loop is the safety net that makes a
    lost timer (crash, missed recovery, clock jump) cost at most one sweep
    interval. Both end up in ``ExpirationEngine.process``, which is
    idempotent, so overlapping runs are harmless.
    """

    def __init__(self, bot: commands.Bot, runtime: LifecycleRuntime) -> None:
        self.bot = bot
        self.runtime = runtime
        self._recovered = False
        logger.info("[LIFECYCLE] Lifecycle scheduler cog loaded")

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        settings = self.runtime.settings
        self._sweep_task.change_interval(seconds=settings.sweep_interval_seconds)
        self._retention_task.change_interval(seconds=settings.retention_interval_seconds)

        if not self._recovered:
            # on_ready fires again after every reconnect; recovery only needs to run once
            self._recovered = True
            await self.recover_all()

        if not self._sweep_task.is_running():
            self._sweep_task.start()
            logger.info("[SWEEP] Started (interval=%.1fs)", settings.sweep_interval_seconds)
        if not self._retention_task.is_running():
            self._retention_task.start()
            logger.info("[RETENTION] Started (interval=%.1fs)", settings.retention_interval_seconds)

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        armed = await self.runtime.recover_guild(guild.id)
        logger.info("[RECOVERY] Joined guild %s, armed %d timer(s)", guild.name, armed)

    async def recover_all(self) -> int:
        total = 0
        for guild in self.bot.guilds:
            try:
                total += await self.runtime.recover_guild(guild.id)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("[RECOVERY] Failed to recover guild %s: %s", guild.name, exc)
        logger.info("[RECOVERY] Armed %d timer(s) across %d guild(s)", total, len(self.bot.guilds))
        return total

    # ------------------------------------------------------------------
    # Loops
    # ------------------------------------------------------------------

    @tasks.loop(seconds=60)  # real interval set in on_ready
    async def _sweep_task(self) -> None:
        processed = await self.runtime.sweep_all()
        if processed:
            logger.info("[SWEEP] Processed %d overdue entit%s", processed, "y" if processed == 1 else "ies")

    @_sweep_task.before_loop
    async def _before_sweep(self) -> None:
        await self.bot.wait_until_ready()

    @tasks.loop(hours=24)  # real interval set in on_ready
    async def _retention_task(self) -> None:
        deleted = await self.runtime.purge_history()
        if deleted:
            logger.info("[RETENTION] Purged %d inactive row(s)", deleted)

    @_retention_task.before_loop
    async def _before_retention(self) -> None:
        await self.bot.wait_until_ready()

    async def cog_unload(self) -> None:
        self._sweep_task.cancel()
        self._retention_task.cancel()
        await self.runtime.shutdown()
        logger.info("[LIFECYCLE] Stopped")


async def setup(bot) -> None:
    await bot.add_cog(LifecycleSchedulerCog(bot, bot.runtime))
