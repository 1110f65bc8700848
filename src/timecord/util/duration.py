"""
Parsing and formatting of human-entered durations.

Accepted input is one or more ``<number><unit>`` groups, for example
``30s``, ``10m``, ``2h``, ``3d``, ``1w`` or ``1h30m``. Units are
case-insensitive and whitespace between groups is ignored.
"""

import re

UNIT_SECONDS = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
    "w": 7 * 24 * 60 * 60,
}

_GROUP = re.compile(r"(\d+)\s*([smhdw])", re.IGNORECASE)
_FULL = re.compile(r"^(?:\s*\d+\s*[smhdw])+\s*$", re.IGNORECASE)

PERMANENT_DURATION = "Indefinite"


def parse_duration(text: str) -> int:
    """
    Convert ``text`` to a number of seconds.

    Raises:
        ValueError: ``text`` is empty, malformed, or adds up to zero.
    """
    if not text or not _FULL.match(text):
        raise ValueError(f"Invalid duration {text!r}. Use formats like 30m, 2h, 3d or 1h30m.")

    total = sum(int(amount) * UNIT_SECONDS[unit.lower()] for amount, unit in _GROUP.findall(text))
    if total <= 0:
        raise ValueError("Duration must be greater than zero.")
    return total


def format_duration(seconds: int | float | None) -> str:
    """
    Render a duration as the two largest non-zero units, e.g. ``2 days 3 hours``.

    ``None`` or zero means no deadline.
    """
    if not seconds:
        return PERMANENT_DURATION

    remaining = int(seconds)
    parts = []
    for name, size in (("week", UNIT_SECONDS["w"]), ("day", UNIT_SECONDS["d"]),
                       ("hour", UNIT_SECONDS["h"]), ("minute", UNIT_SECONDS["m"]), ("second", 1)):
        count, remaining = divmod(remaining, size)
        if count:
            parts.append(f"{count} {name}{'s' if count != 1 else ''}")
        if len(parts) == 2:
            break
    return " ".join(parts) if parts else "0 seconds"
