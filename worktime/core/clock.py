"""
Wall-clock source in epoch milliseconds.

Engines take a ``Clock`` instead of calling ``time`` directly so tests can
pin "now".
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], int]

MS_PER_SECOND = 1000
MS_PER_HOUR = 3600 * MS_PER_SECOND
MS_PER_DAY = 24 * MS_PER_HOUR


def system_clock() -> int:
    return int(time.time() * MS_PER_SECOND)


def year_of(epoch_ms: int) -> int:
    """Calendar year (UTC) of an epoch-millisecond timestamp."""
    return datetime.fromtimestamp(epoch_ms / MS_PER_SECOND, tz=timezone.utc).year


def date_of(epoch_ms: int) -> str:
    """``YYYY-MM-DD`` (UTC) of an epoch-millisecond timestamp."""
    return datetime.fromtimestamp(epoch_ms / MS_PER_SECOND, tz=timezone.utc).strftime("%Y-%m-%d")


def week_of(epoch_ms: int) -> tuple[int, int]:
    """ISO ``(year, week)`` (UTC) of an epoch-millisecond timestamp."""
    iso = datetime.fromtimestamp(epoch_ms / MS_PER_SECOND, tz=timezone.utc).isocalendar()
    return iso[0], iso[1]
