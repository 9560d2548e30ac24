"""Shared utilities used across the booking core."""

import re
from datetime import date, datetime, time

_WHITESPACE = re.compile(r"\s+")

WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


def normalize_text(value: str) -> str:
    """Case-fold and collapse whitespace for keyword matching.

    Examples:
        >>> normalize_text("  My   Bookings ")
        'my bookings'
    """
    return _WHITESPACE.sub(" ", value.strip()).casefold()


def to_minutes(value: time) -> int:
    """Minutes since midnight."""
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    """Inverse of to_minutes. Values past 23:59 are clamped."""
    minutes = max(0, min(minutes, 23 * 60 + 59))
    return time(minutes // 60, minutes % 60)


def intervals_overlap(start_a: int, end_a: int, start_b: int, end_b: int) -> bool:
    """Half-open interval overlap: [a) and [b) share at least one minute."""
    return start_a < end_b and end_a > start_b


def round_up(value: int, step: int, origin: int = 0) -> int:
    """Round ``value`` up to the next point on the grid origin + k*step."""
    offset = value - origin
    if offset <= 0:
        return origin
    return origin + -(-offset // step) * step


def parse_clock(value: str) -> time:
    """Parse ``HH:MM``. Raises ValueError on anything else."""
    return datetime.strptime(value.strip(), "%H:%M").time()


def format_clock(value: time) -> str:
    return value.strftime("%H:%M")


def format_date_label(value: date) -> str:
    """Short menu label, e.g. ``03/18 (Tue)``."""
    return f"{value.strftime('%m/%d')} ({WEEKDAY_NAMES[value.weekday()]})"


def truncate(value: str, limit: int) -> str:
    """Trim surrounding whitespace and cut to ``limit`` characters."""
    value = value.strip()
    return value if len(value) <= limit else value[:limit]
