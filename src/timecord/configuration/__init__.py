"""
Configuration management for Timecord.

- **app_configuration.py**: File-locked YAML loader for global settings.
  Provides the database path, log level, sweep and retention intervals,
  privileged permission names and the per-kind limits for polls, giveaways
  and quarantines. Falls back gracefully on missing or malformed config files.
"""
