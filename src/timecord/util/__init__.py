"""
Utility functions and helpers for Timecord.

- **logger.py**: Centralized logging configuration with colored console output,
  rotating file handlers, and per-session log aggregation. Suppresses noise from
  Discord internals and aiosqlite.

- **discord_utils.py**: Permission checks and ``Actor`` construction from an
  interaction.

- **duration.py**: Parsing and formatting of ``30m``/``2h``/``1h30m`` durations.
"""
