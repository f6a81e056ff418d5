"""Wall-clock sources."""
from __future__ import annotations

import datetime as dt
from typing import Callable, Optional

Clock = Callable[[], dt.datetime]


class ClockError(RuntimeError):
    """Raised when a clock cannot be built."""


def system_clock(tz_name: Optional[str] = None) -> Clock:
    """Return a clock reading local time, or time in ``tz_name`` when given.

    Schedules are wall-clock ``HH:MM`` values, so the clock must answer in the
    zone the user thinks in.
    """
    if tz_name is None:
        return lambda: dt.datetime.now().astimezone()

    tzinfo = _tz_from_name(tz_name)
    return lambda: dt.datetime.now(tz=tzinfo)


def localize(value: dt.datetime, tz_name: Optional[str] = None) -> dt.datetime:
    """Attach a zone to a naive datetime; aware values pass through."""
    if value.tzinfo is not None:
        return value
    if tz_name is None:
        return value.astimezone()
    return value.replace(tzinfo=_tz_from_name(tz_name))


def _tz_from_name(name: str) -> dt.tzinfo:
    from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ClockError(f"Unknown timezone: {name}") from exc
