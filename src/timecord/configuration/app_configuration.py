from __future__ import annotations

import fcntl
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from timecord.util.logger import get_logger

logger = get_logger("app_configuration")


CONFIG_PATH = Path("./config/app_config.yml").resolve()

DEFAULT_VOTE_EMOJIS: Tuple[str, ...] = (
    "1\N{COMBINING ENCLOSING KEYCAP}",
    "2\N{COMBINING ENCLOSING KEYCAP}",
    "3\N{COMBINING ENCLOSING KEYCAP}",
    "4\N{COMBINING ENCLOSING KEYCAP}",
    "5\N{COMBINING ENCLOSING KEYCAP}",
    "6\N{COMBINING ENCLOSING KEYCAP}",
    "7\N{COMBINING ENCLOSING KEYCAP}",
    "8\N{COMBINING ENCLOSING KEYCAP}",
    "9\N{COMBINING ENCLOSING KEYCAP}",
    "\N{KEYCAP TEN}",
)


@dataclass(frozen=True, slots=True)
class PollLimits:
    """Creation-time bounds for polls."""

    min_duration_seconds: int = 5 * 60
    max_duration_seconds: int = 7 * 24 * 60 * 60
    min_options: int = 2
    max_options: int = 10
    vote_emojis: Tuple[str, ...] = DEFAULT_VOTE_EMOJIS


@dataclass(frozen=True, slots=True)
class GiveawayLimits:
    """Creation-time bounds and draw policy for giveaways."""

    min_duration_seconds: int = 10 * 60
    max_duration_seconds: int = 30 * 24 * 60 * 60
    max_winners: int = 20
    entry_emoji: str = "\N{PARTY POPPER}"
    exclude_previous_winners_on_reroll: bool = False


@dataclass(frozen=True, slots=True)
class QuarantineLimits:
    """Bounds and defaults for quarantine sanctions."""

    default_duration_seconds: int = 24 * 60 * 60
    max_duration_seconds: int = 30 * 24 * 60 * 60
    max_reason_length: int = 500
    notify_user: bool = True


@dataclass(frozen=True, slots=True)
class LifecycleSettings:
    """Everything the lifecycle runtime needs from the config file."""

    sweep_interval_seconds: float = 60.0
    sweep_batch_size: int = 100
    retention_days: int = 30
    retention_interval_seconds: float = 24 * 60 * 60
    poll: PollLimits = field(default_factory=PollLimits)
    giveaway: GiveawayLimits = field(default_factory=GiveawayLimits)
    quarantine: QuarantineLimits = field(default_factory=QuarantineLimits)
    privileged_permissions: Tuple[str, ...] = ("manage_messages", "moderate_members", "administrator")


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key, {})
    return value if isinstance(value, dict) else {}


class AppConfig:
    """File-lock based accessor around the YAML application configuration.

    The class caches the contents of ``./config/app_config.yml`` and exposes
    typed shortcuts with defaults for every value, so a missing or broken file
    never prevents the bot from starting.
    """

    def __init__(self, config_path: Path = CONFIG_PATH) -> None:
        self.config_path = config_path
        self._data: Dict[str, Any] = {}
        self.reload()

    # --------------------------
    # Private helpers
    # --------------------------
    def load_from_disk(self) -> Dict[str, Any]:
        try:
            with self.config_path.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = yaml.safe_load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except FileNotFoundError:
            logger.error("[APP CONFIGURATION] Config file %s not found, using defaults.", self.config_path)
            return {}
        except Exception as exc:
            logger.error("[APP CONFIGURATION] Failed to load config %s: %s", self.config_path, exc)
            return {}

        if not isinstance(data, dict):
            logger.error("[APP CONFIGURATION] Config %s is not a mapping, using defaults.", self.config_path)
            return {}
        return data

    # --------------------------
    # Public API
    # --------------------------
    def reload(self) -> Dict[str, Any]:
        """Re-read the YAML file, replace the in-memory cache and return it."""
        self._data = self.load_from_disk()
        return self._data

    @property
    def data(self) -> Dict[str, Any]:
        """Return the cached mapping. Callers must not mutate it."""
        return self._data

    def get(self, key: str, default: Any = None) -> Any:
        """Safe lookup for top-level configuration keys."""
        return self._data.get(key, default)

    # --------------------------
    # High-level shortcuts
    # --------------------------
    @property
    def database_path(self) -> Path:
        """Path of the SQLite database file."""
        value = _section(self._data, "database").get("path", "./data/timecord.db")
        return Path(str(value)).resolve()

    @property
    def log_level(self) -> str:
        return str(_section(self._data, "logging").get("level", "INFO")).upper()

    @property
    def sweep_interval_seconds(self) -> float:
        """Seconds between two sweep passes over overdue rows."""
        return float(_section(self._data, "lifecycle").get("sweep_interval_seconds", 60.0))

    @property
    def sweep_batch_size(self) -> int:
        return int(_section(self._data, "lifecycle").get("sweep_batch_size", 100))

    @property
    def retention_days(self) -> int:
        """Inactive rows older than this are deleted by the retention loop."""
        return int(_section(self._data, "lifecycle").get("retention_days", 30))

    @property
    def retention_interval_seconds(self) -> float:
        return float(_section(self._data, "lifecycle").get("retention_interval_seconds", 24 * 60 * 60))

    @property
    def privileged_permissions(self) -> Tuple[str, ...]:
        """Permission names that allow ending entities created by someone else."""
        value = _section(self._data, "lifecycle").get("privileged_permissions")
        if isinstance(value, list) and value:
            return tuple(str(v) for v in value)
        return LifecycleSettings().privileged_permissions

    @property
    def poll_limits(self) -> PollLimits:
        section = _section(self._data, "polls")
        defaults = PollLimits()
        emojis: List[str] = section.get("vote_emojis") or list(defaults.vote_emojis)
        return PollLimits(
            min_duration_seconds=int(section.get("min_duration_seconds", defaults.min_duration_seconds)),
            max_duration_seconds=int(section.get("max_duration_seconds", defaults.max_duration_seconds)),
            min_options=int(section.get("min_options", defaults.min_options)),
            max_options=int(section.get("max_options", defaults.max_options)),
            vote_emojis=tuple(str(e) for e in emojis),
        )

    @property
    def giveaway_limits(self) -> GiveawayLimits:
        section = _section(self._data, "giveaways")
        defaults = GiveawayLimits()
        return GiveawayLimits(
            min_duration_seconds=int(section.get("min_duration_seconds", defaults.min_duration_seconds)),
            max_duration_seconds=int(section.get("max_duration_seconds", defaults.max_duration_seconds)),
            max_winners=int(section.get("max_winners", defaults.max_winners)),
            entry_emoji=str(section.get("entry_emoji", defaults.entry_emoji)),
            exclude_previous_winners_on_reroll=bool(
                section.get("exclude_previous_winners_on_reroll", defaults.exclude_previous_winners_on_reroll)
            ),
        )

    @property
    def quarantine_limits(self) -> QuarantineLimits:
        section = _section(self._data, "quarantine")
        defaults = QuarantineLimits()
        return QuarantineLimits(
            default_duration_seconds=int(section.get("default_duration_seconds", defaults.default_duration_seconds)),
            max_duration_seconds=int(section.get("max_duration_seconds", defaults.max_duration_seconds)),
            max_reason_length=int(section.get("max_reason_length", defaults.max_reason_length)),
            notify_user=bool(section.get("notify_user", defaults.notify_user)),
        )

    def lifecycle_settings(self) -> LifecycleSettings:
        """Snapshot every lifecycle-related value into one immutable object."""
        return LifecycleSettings(
            sweep_interval_seconds=self.sweep_interval_seconds,
            sweep_batch_size=self.sweep_batch_size,
            retention_days=self.retention_days,
            retention_interval_seconds=self.retention_interval_seconds,
            poll=self.poll_limits,
            giveaway=self.giveaway_limits,
            quarantine=self.quarantine_limits,
            privileged_permissions=self.privileged_permissions,
        )
