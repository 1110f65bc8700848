import pytest

from timecord.util.duration import PERMANENT_DURATION, format_duration, parse_duration


@pytest.mark.parametrize(
    "text, seconds",
    [
        ("30s", 30),
        ("10m", 600),
        ("2h", 7200),
        ("3d", 3 * 86400),
        ("1w", 7 * 86400),
        ("1h30m", 5400),
        ("1H 30M", 5400),
        (" 2d 4h ", 2 * 86400 + 4 * 3600),
    ],
)
def test_parse_duration(text, seconds):
    assert parse_duration(text) == seconds


@pytest.mark.parametrize("text", ["", "abc", "10", "5y", "0m", "1h foo", "-5m"])
def test_parse_duration_rejects_bad_input(text):
    with pytest.raises(ValueError):
        parse_duration(text)


@pytest.mark.parametrize(
    "seconds, expected",
    [
        (None, PERMANENT_DURATION),
        (0, PERMANENT_DURATION),
        (1, "1 second"),
        (90, "1 minute 30 seconds"),
        (3600, "1 hour"),
        (90061, "1 day 1 hour"),
        (8 * 86400 + 5, "1 week 1 day"),
    ],
)
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected
