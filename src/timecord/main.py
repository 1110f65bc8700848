"""
Timecord
========

A Discord bot that runs time-bounded community features (quarantines, polls
and giveaways) on a persistent, restart-safe expiration engine.
"""

import os
import sys
from pathlib import Path


def resolve_base_dir() -> Path:
    """Determine the base directory of the project.

    Resolution order:
    1. TIMECORD_HOME environment variable, if set.
    2. If running in a frozen/compiled context (e.g., PyInstaller, Nuitka), use the executable's directory.
    3. Otherwise, assume running from source and use the grandparent of the package directory.
    """
    if env_home := os.getenv("TIMECORD_HOME"):
        return Path(env_home).resolve()

    if getattr(sys, "frozen", False) or getattr(sys, "compiled", False):
        return Path(sys.argv[0]).resolve().parent

    return Path(__file__).resolve().parents[2]


BASE_DIR = resolve_base_dir()
os.chdir(BASE_DIR)

import asyncio

import discord
from dotenv import load_dotenv

from timecord.bot import TimecordBot
from timecord.configuration.app_configuration import AppConfig
from timecord.database.db_connection import ConnectionManager
from timecord.util.logger import get_logger, handle_exception, set_level

logger = get_logger("main")


def load_environment() -> str:
    """Load environment variables and return the Discord bot token.

    Raises
    ------
    SystemExit
        If the required ``DISCORD_BOT_TOKEN`` variable is missing.
    """
    load_dotenv(dotenv_path=BASE_DIR / ".env")
    token = os.getenv("DISCORD_BOT_TOKEN")
    if not token:
        logger.critical("'DISCORD_BOT_TOKEN' environment variable not set. Bot cannot start.")
        sys.exit(1)
    return token


def build_intents() -> discord.Intents:
    """Intents for guild, member and role events. Message content is not needed."""
    intents = discord.Intents.default()
    intents.guilds = True
    intents.members = True
    return intents


def create_bot(config: AppConfig, db: ConnectionManager) -> TimecordBot:
    """Instantiate the Discord bot around an open database."""
    return TimecordBot(config, db, intents=build_intents())


async def start_bot(bot: TimecordBot, token: str) -> None:
    logger.info("Attempting to connect to Discord…")
    try:
        await bot.start(token)
    except asyncio.CancelledError:
        logger.info("Discord bot start cancelled; shutting down")
    finally:
        logger.info("Discord bot start routine finished.")


async def shutdown_runtime(bot: TimecordBot | None, db: ConnectionManager) -> None:
    """Close the Discord connection, stop every timer and close the database.

    Stored lifecycle state is untouched; the next start re-arms it.
    """
    if bot is not None:
        try:
            if not bot.is_closed():
                await bot.close()
        except Exception as exc:
            logger.exception("Error while closing the Discord client: %s", exc)

        try:
            await bot.runtime.shutdown()
        except Exception as exc:
            logger.exception("Error during lifecycle runtime shutdown: %s", exc)

    try:
        await db.close()
    except Exception as exc:
        logger.exception("Error while closing the database: %s", exc)

    logger.info("Shutdown complete.")


async def async_main() -> int:
    """Bootstrap configuration, database and bot, returning an exit code."""
    token = load_environment()

    config = AppConfig()
    if not os.getenv("TIMECORD_LOG_LEVEL"):
        set_level(config.log_level)

    db = ConnectionManager()
    try:
        logger.info("Opening database at %s", config.database_path)
        await db.open(config.database_path)
    except Exception as exc:
        logger.critical("Failed to initialize database: %s", exc)
        return 1

    bot = None
    exit_code = 0
    try:
        bot = create_bot(config, db)
        await start_bot(bot, token)
    except discord.LoginFailure as exc:
        logger.critical("Discord rejected the bot token: %s", exc)
        exit_code = 1
    except Exception as exc:
        logger.critical("Discord bot runtime error: %s", exc)
        exit_code = 1
    finally:
        await shutdown_runtime(bot, db)

    return exit_code


def main() -> int:
    """Entrypoint that runs the async runtime and returns the process exit code."""
    sys.excepthook = handle_exception
    logger.info("Starting Timecord…")
    try:
        return asyncio.run(async_main())
    except KeyboardInterrupt:
        logger.info("Shutdown requested by user.")
        return 0
    except SystemExit as exit_exc:
        code = exit_exc.code
        if isinstance(code, int):
            return code
        return 0 if code is None else 1
    except Exception as exc:
        logger.critical("An unexpected error occurred while running the bot: %s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
