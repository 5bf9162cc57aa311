"""
Histories derived from the event log for display: the soil log, the
watering streak and the flat water journal.

These are read-only views on top of the derivation engine. The soil log
replays through the engine itself so the deltas it reports are exactly
the ones derive() applied, caps and credit limits included.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Iterable, List, Optional

from ..config import DEFAULT_CONSTANTS, SoilConstants
from ..events.types import (
    EventType,
    SproutHarvested,
    SproutPlanted,
    SproutUprooted,
    SproutWatered,
    SunShone,
    parse_timestamp,
)
from ..taxonomy import twig_label
from . import ledger, resets
from .engine import iter_replay, unique_events
from .state import DerivedState

logger = logging.getLogger(__name__)

_SOIL_EVENT_TYPES = frozenset({
    EventType.SPROUT_PLANTED.value,
    EventType.SPROUT_WATERED.value,
    EventType.SPROUT_HARVESTED.value,
    EventType.SPROUT_UPROOTED.value,
    EventType.SUN_SHONE.value,
})


@dataclass(frozen=True)
class SoilLogEntry:
    """One change to soil.

    Attributes:
        timestamp: Event timestamp
        amount: Change in available soil
        capacity_change: Change in soil capacity
        reason: Short human readable reason
        context: Sprout title or twig label the change relates to
        soil_available: Available soil after the change
        soil_capacity: Soil capacity after the change
    """

    timestamp: str
    amount: float
    capacity_change: float
    reason: str
    context: Optional[str]
    soil_available: float
    soil_capacity: float


@dataclass(frozen=True)
class WateringStreak:
    current: int
    longest: int


@dataclass(frozen=True)
class WaterLogEntry:
    """A water entry flattened with its sprout's identity."""

    timestamp: str
    content: str
    prompt: Optional[str]
    sprout_id: str
    sprout_title: str
    twig_id: str
    twig_label: str


def _reason(event: Any) -> str:
    if isinstance(event, SproutPlanted):
        return "Planted sprout"
    if isinstance(event, SproutWatered):
        return "Watered sprout"
    if isinstance(event, SproutHarvested):
        return f"Harvested ({event.result}/5)"
    if isinstance(event, SproutUprooted):
        return "Uprooted sprout"
    return "Sun reflection"


def soil_log(
    events: Iterable[Any],
    *,
    constants: Optional[SoilConstants] = None,
    tz: Optional[tzinfo] = None,
) -> List[SoilLogEntry]:
    """Every soil change in replay order.

    Events that were skipped, or that changed nothing (a capped credit, a
    second watering of the same sprout on one water day), are left out.
    """
    constants = constants or DEFAULT_CONSTANTS
    places = constants.decimal_places
    entries: List[SoilLogEntry] = []
    available = capacity = constants.starting_capacity

    for event, state in iter_replay(events, constants=constants, tz=tz):
        amount = ledger.round_soil(state.soil_available - available, places)
        capacity_change = ledger.round_soil(state.soil_capacity - capacity, places)
        available, capacity = state.soil_available, state.soil_capacity
        if event.type not in _SOIL_EVENT_TYPES or (amount == 0 and capacity_change == 0):
            continue

        if isinstance(event, SunShone):
            context: Optional[str] = event.twig_label
        else:
            sprout = state.sprouts.get(event.entity_id)
            context = sprout.title if sprout else None

        entries.append(
            SoilLogEntry(
                timestamp=event.timestamp,
                amount=amount,
                capacity_change=capacity_change,
                reason=_reason(event),
                context=context,
                soil_available=available,
                soil_capacity=capacity,
            )
        )
    return entries


def watering_streak(
    events: Iterable[Any],
    now: Optional[datetime] = None,
    *,
    constants: Optional[SoilConstants] = None,
    tz: Optional[tzinfo] = None,
) -> WateringStreak:
    """Current and longest runs of consecutive water days.

    The current streak is still alive if the last water day is today or
    yesterday; before the daily reset, "today" is the previous date.
    """
    constants = constants or DEFAULT_CONSTANTS
    now = now if now is not None else datetime.now(timezone.utc)

    days: set[date] = set()
    for event in unique_events(events):
        if event.type != EventType.SPROUT_WATERED.value:
            continue
        moment = parse_timestamp(event.timestamp)
        if moment is None:
            continue
        try:
            days.add(resets.water_day(moment, tz, constants))
        except OverflowError:
            logger.warning("Watering outside the calendar range", extra={"timestamp": event.timestamp})
    if not days:
        return WateringStreak(current=0, longest=0)

    ordered = sorted(days)
    longest = run = 1
    for previous, day in zip(ordered, ordered[1:]):
        run = run + 1 if day - previous == timedelta(days=1) else 1
        longest = max(longest, run)

    today = resets.water_day(now, tz, constants)
    current = 0
    if ordered[-1] >= today - timedelta(days=1):
        current = 1
        for previous, day in zip(reversed(ordered[:-1]), reversed(ordered)):
            if day - previous != timedelta(days=1):
                break
            current += 1
    return WateringStreak(current=current, longest=longest)


def all_water_entries(state: DerivedState) -> List[WaterLogEntry]:
    """Every water entry across all sprouts, newest first."""
    entries = [
        WaterLogEntry(
            timestamp=entry.timestamp,
            content=entry.content,
            prompt=entry.prompt,
            sprout_id=sprout.id,
            sprout_title=sprout.title,
            twig_id=sprout.twig_id,
            twig_label=twig_label(sprout.twig_id),
        )
        for sprout in state.sprouts.values()
        for entry in sprout.water_entries
    ]
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    entries.sort(key=lambda e: parse_timestamp(e.timestamp) or epoch, reverse=True)
    return entries
