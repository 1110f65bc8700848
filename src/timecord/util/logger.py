import logging
from logging.handlers import RotatingFileHandler
import os
import sys
from pathlib import Path
from datetime import datetime

# -------------------- Configuration --------------------
LOGS_DIR: Path = Path(os.getenv("TIMECORD_LOG_DIR", Path(__file__).parents[3] / "logs")).resolve()

LOG_FORMAT: str = "[%(asctime)s] [%(levelname)s] [%(name)s:%(funcName)s:%(lineno)d] %(message)s"
DATE_FORMAT: str = "%Y-%m-%d %H-%M-%S"

LOG_COLORS = {
    "DEBUG": "\033[36m",      # Cyan
    "INFO": "\033[32m",       # Green
    "WARNING": "\033[33m",    # Yellow
    "ERROR": "\033[31m",      # Red
    "CRITICAL": "\033[38;5;88m",  # Dark Red (ANSI 256-color)
}
RESET_COLOR = "\033[0m"

# Rotation limits for the session log file
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUP_COUNT = 5

# Shared session log file (resolved on first use)
LOG_FILEPATH: Path | None = None


# -------------------- Formatters --------------------
class ColorFormatter(logging.Formatter):
    """
    Log formatter that wraps each record in an ANSI colour picked from its level.

    Only used for the console handler, and only when stderr is a terminal.
    """

    def format(self, record: logging.LogRecord) -> str:
        color = LOG_COLORS.get(record.levelname, "")
        message = super().format(record)
        return f"{color}{message}{RESET_COLOR}" if color else message


plain_formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)


def should_use_color() -> bool:
    """Return True when stderr is attached to a TTY."""
    try:
        return sys.stderr.isatty()
    except Exception:
        return False


color_formatter = ColorFormatter(LOG_FORMAT, datefmt=DATE_FORMAT) if should_use_color() else plain_formatter


def resolve_log_level() -> int:
    """
    Resolve the base log level.

    ``TIMECORD_LOG_LEVEL`` wins over everything else; unknown names fall back
    to DEBUG so nothing is silently dropped.
    """
    name = os.getenv("TIMECORD_LOG_LEVEL", "DEBUG").upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.DEBUG


# -------------------- Logger Setup --------------------

def get_log_filepath() -> Path:
    """
    Return the log file shared by every logger of this process.

    The newest file from today is reused when it was touched less than 60
    seconds ago, so a quick restart keeps appending to the same session log.
    Otherwise a new file named after the current timestamp is created.
    """
    global LOG_FILEPATH

    if LOG_FILEPATH is not None:
        return LOG_FILEPATH

    LOGS_DIR.mkdir(parents=True, exist_ok=True)
    today_prefix = datetime.now().strftime("%Y-%m-%d")
    existing_logs = sorted(LOGS_DIR.glob(f"{today_prefix}*.log"), key=lambda p: p.stat().st_mtime, reverse=True)

    if existing_logs and datetime.now().timestamp() - existing_logs[0].stat().st_mtime < 60:
        LOG_FILEPATH = existing_logs[0]
    else:
        LOG_FILEPATH = LOGS_DIR / (datetime.now().strftime(DATE_FORMAT) + ".log")

    return LOG_FILEPATH


def setup_logger(logger_name: str) -> logging.Logger:
    """Configure and return a logger with console and rotating file handlers.

    Parameters
    ----------
    logger_name:
        Name of the logger to configure.

    Returns
    -------
    logging.Logger
        Configured logger instance. Calling this twice for the same name does
        not stack handlers.
    """
    logger = logging.getLogger(f"timecord.{logger_name}")

    if logger.handlers:
        return logger

    base_level = resolve_log_level()
    logger.setLevel(base_level)
    logger.propagate = False

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(color_formatter)
    console_handler.setLevel(base_level)
    logger.addHandler(console_handler)

    file_handler = RotatingFileHandler(
        get_log_filepath(),
        maxBytes=MAX_LOG_BYTES,
        backupCount=LOG_BACKUP_COUNT,
        encoding="utf-8",
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(plain_formatter)
    logger.addHandler(file_handler)

    return logger


def get_logger(logger_name: str) -> logging.Logger:
    """Retrieve a timecord logger, creating it if necessary."""
    return setup_logger(logger_name)


def set_level(level: str | int) -> None:
    """Change the level of every timecord logger created so far."""
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        level = resolved if isinstance(resolved, int) else logging.INFO

    for name, existing in logging.root.manager.loggerDict.items():
        if name.startswith("timecord.") and isinstance(existing, logging.Logger):
            existing.setLevel(level)
            for handler in existing.handlers:
                if not isinstance(handler, RotatingFileHandler):
                    handler.setLevel(level)


# -------------------- Exception Handling --------------------
def handle_exception(exception_type, exception_instance, exception_traceback) -> None:
    """
    ``sys.excepthook`` replacement that routes uncaught exceptions to the log.

    KeyboardInterrupt goes to the default hook so Ctrl+C still exits normally.
    """
    if issubclass(exception_type, KeyboardInterrupt):
        sys.__excepthook__(exception_type, exception_instance, exception_traceback)
    else:
        get_logger("main").error(
            "Uncaught exception", exc_info=(exception_type, exception_instance, exception_traceback)
        )


# -------------------- Suppress Noisy Libraries --------------------
NOISY_LOGGERS = {
    "discord": logging.WARNING,
    "discord.gateway": logging.ERROR,
    "discord.http": logging.ERROR,
    "discord.client": logging.ERROR,
    "aiosqlite": logging.WARNING,
    "asyncio": logging.WARNING,
}

for noisy_logger, noisy_level in NOISY_LOGGERS.items():
    logging.getLogger(noisy_logger).setLevel(noisy_level)
