"""
Reset boundaries for the time-gated resources.

Water resets every day at ``reset_hour`` local time; sun resets once a week
at the same hour on ``sun_reset_weekday``. Boundaries are computed on the
local wall clock and then localized, so DST transitions move the instant
of a boundary but never its wall-clock hour.

``tz=None`` means the system's local zone; tests and servers pass an
explicit tzinfo.

Invariants:
    - A moment exactly at a boundary belongs to the new period
    - Every function returns an aware datetime
    - Naive inputs are read as UTC, matching parse_timestamp()
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Optional

from ..config import DEFAULT_CONSTANTS, SoilConstants
from ..errors import LedgerError


def _aware(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment


def _local_wall(moment: datetime, tz: Optional[tzinfo]) -> datetime:
    moment = _aware(moment)
    local = moment.astimezone(tz) if tz is not None else moment.astimezone()
    return local.replace(tzinfo=None)


def _localize(wall: datetime, tz: Optional[tzinfo]) -> datetime:
    if tz is None:
        # astimezone() on a naive datetime interprets it as system local time
        return wall.astimezone()
    return wall.replace(tzinfo=tz)


def _daily_wall(moment: datetime, tz: Optional[tzinfo], constants: SoilConstants) -> datetime:
    wall = _local_wall(moment, tz)
    boundary = wall.replace(hour=constants.reset_hour, minute=0, second=0, microsecond=0)
    if wall < boundary:
        boundary -= timedelta(days=1)
    return boundary


def daily_reset(
    now: datetime,
    tz: Optional[tzinfo] = None,
    constants: SoilConstants = DEFAULT_CONSTANTS,
) -> datetime:
    """Most recent daily reset boundary at or before ``now``."""
    return _localize(_daily_wall(now, tz, constants), tz)


def weekly_reset(
    now: datetime,
    tz: Optional[tzinfo] = None,
    constants: SoilConstants = DEFAULT_CONSTANTS,
) -> datetime:
    """Most recent weekly reset boundary at or before ``now``."""
    boundary = _daily_wall(now, tz, constants)
    boundary -= timedelta(days=(boundary.weekday() - constants.sun_reset_weekday) % 7)
    return _localize(boundary, tz)


def water_day(
    moment: datetime,
    tz: Optional[tzinfo] = None,
    constants: SoilConstants = DEFAULT_CONSTANTS,
) -> date:
    """Calendar date of the water day containing ``moment``.

    A water day runs from one daily reset to the next, so 05:59 belongs to
    the previous date.
    """
    return _daily_wall(moment, tz, constants).date()


def local_date(moment: datetime, tz: Optional[tzinfo] = None) -> date:
    """Local calendar date of ``moment``."""
    return _local_wall(moment, tz).date()


def end_date(
    planted_at: datetime,
    season: str,
    tz: Optional[tzinfo] = None,
    constants: SoilConstants = DEFAULT_CONSTANTS,
) -> datetime:
    """End date of a sprout: planting time plus the season, at end_date_hour local.

    Raises:
        LedgerError: If the season is unknown
    """
    spec = constants.seasons.get(season)
    if spec is None:
        raise LedgerError(f"Unknown season: {season!r}", value=season)
    target = _aware(planted_at) + timedelta(seconds=spec.duration_seconds)
    wall = _local_wall(target, tz).replace(
        hour=constants.end_date_hour, minute=0, second=0, microsecond=0
    )
    return _localize(wall, tz)
