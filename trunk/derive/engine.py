"""
Derivation engine: replay an event log into state.

derive() is the single function every client must compute identically.
It is pure, performs no I/O and never raises: malformed events are
skipped, unknown sprouts are logged and skipped, and the replay continues.

Replay order:
    1. Coerce inputs (Event objects pass through, mappings are parsed)
    2. Stable sort by parsed timestamp; unparseable timestamps go last
    3. Drop repeated client_ids (first in sorted order wins)
    4. Apply each event's rule against the running state

Invariants:
    - Same multiset of events in any timestamp-preserving order gives the
      same DerivedState
    - soil_capacity never decreases and never exceeds max_capacity
    - 0 <= soil_available <= soil_capacity after every event
    - Water and sun availability are computed from the log at call time,
      never stored

How to change safely:
    - Any rule change bumps DERIVATION_VERSION and needs a fixture case in
      tests/fixtures/derivation_cases.json
    - Keep every soil update routed through ledger.credit/debit
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from ..config import DEFAULT_CONSTANTS, SoilConstants
from ..errors import EventValidationError, LedgerError
from ..events.types import (
    BaseEvent,
    Event,
    EventType,
    LeafCreated,
    SproutHarvested,
    SproutPlanted,
    SproutUprooted,
    SproutWatered,
    SunShone,
    format_timestamp,
    parse_event,
    parse_timestamp,
)
from . import ledger, resets
from .lifecycle import TransitionOutcome, transition
from .state import DerivedState, Leaf, ResourceState, Sprout, SunEntry, WaterEntry

logger = logging.getLogger(__name__)

_FAR_FUTURE = datetime.max.replace(tzinfo=timezone.utc)


def _coerce(item: Any) -> Optional[Event]:
    if isinstance(item, BaseEvent):
        return item  # type: ignore[return-value]
    try:
        return parse_event(item)
    except EventValidationError as e:
        logger.warning(
            "Skipping malformed event",
            extra={"error": e.message, "event_type": e.event_type, "field": e.field_name},
        )
        return None


def _sort_key(indexed: Tuple[int, Event]) -> Tuple[int, datetime, int]:
    index, event = indexed
    moment = parse_timestamp(event.timestamp)
    if moment is None:
        return (1, _FAR_FUTURE, index)
    return (0, moment, index)


def sort_events(events: Iterable[Event]) -> List[Event]:
    """Sort events ascending by timestamp, keeping arrival order on ties."""
    return [event for _, event in sorted(enumerate(events), key=_sort_key)]


def unique_events(events: Iterable[Any]) -> Iterator[Event]:
    """Coerce, sort and deduplicate by client_id."""
    coerced = [e for e in (_coerce(item) for item in events) if e is not None]
    seen: set[str] = set()
    for event in sort_events(coerced):
        if event.client_id in seen:
            continue
        seen.add(event.client_id)
        yield event


class _Replay:
    """Running state for a single derive() call."""

    def __init__(self, constants: SoilConstants, tz: Optional[tzinfo]) -> None:
        self.constants = constants
        self.tz = tz
        self.places = constants.decimal_places
        self.state = DerivedState(
            soil_capacity=constants.starting_capacity,
            soil_available=constants.starting_capacity,
        )
        # (sprout_id, local date) -> soil credits granted
        self.water_credits: Dict[Tuple[str, Optional[date]], int] = defaultdict(int)

    def skip(self, event: Event, reason: str) -> None:
        self.state.skipped += 1
        logger.warning(
            "Skipping event during replay",
            extra={
                "reason": reason,
                "event_type": event.type,
                "client_id": event.client_id,
                "entity_id": event.entity_id,
                "timestamp": event.timestamp,
            },
        )

    def calendar_day(self, event: Event) -> Optional[date]:
        moment = parse_timestamp(event.timestamp)
        if moment is None:
            return None
        try:
            return resets.local_date(moment, self.tz)
        except OverflowError:
            return None

    def credit(self, amount: float) -> None:
        s = self.state
        s.soil_available = ledger.credit(s.soil_available, amount, s.soil_capacity, self.places)

    def apply(self, event: Event) -> None:
        if isinstance(event, LeafCreated):
            self.leaf_created(event)
        elif isinstance(event, SproutPlanted):
            self.sprout_planted(event)
        elif isinstance(event, SproutWatered):
            self.sprout_watered(event)
        elif isinstance(event, SproutHarvested):
            self.sprout_harvested(event)
        elif isinstance(event, SproutUprooted):
            self.sprout_uprooted(event)
        elif isinstance(event, SunShone):
            self.sun_shone(event)
        else:
            self.skip(event, "unknown event type")

    def leaf_created(self, event: LeafCreated) -> None:
        if event.leaf_id in self.state.leaves:
            logger.debug("Ignoring repeated leaf_created", extra={"leaf_id": event.leaf_id})
            return
        self.state.leaves[event.leaf_id] = Leaf(
            id=event.leaf_id,
            twig_id=event.twig_id,
            name=event.name,
            created_at=event.timestamp,
        )

    def sprout_planted(self, event: SproutPlanted) -> None:
        existing = self.state.sprouts.get(event.sprout_id)
        step = transition(existing.state if existing else None, EventType.SPROUT_PLANTED)
        if not step.applied:
            self.skip(event, step.reason)
            return

        planted_at = parse_timestamp(event.timestamp)
        end: Optional[str] = None
        if planted_at is not None:
            try:
                end = format_timestamp(
                    resets.end_date(planted_at, event.season, self.tz, self.constants)
                )
            except (LedgerError, OverflowError):
                end = None

        self.state.sprouts[event.sprout_id] = Sprout(
            id=event.sprout_id,
            twig_id=event.twig_id,
            title=event.title,
            season=event.season,
            environment=event.environment,
            soil_cost=event.soil_cost,
            created_at=event.timestamp,
            end_date=end,
            leaf_id=event.leaf_id,
            bloom_wither=event.bloom_wither,
            bloom_budding=event.bloom_budding,
            bloom_flourish=event.bloom_flourish,
        )
        self.state.soil_available = ledger.debit(self.state.soil_available, event.soil_cost, self.places)

    def sprout_watered(self, event: SproutWatered) -> None:
        sprout = self.state.sprouts.get(event.sprout_id)
        if sprout is None:
            self.skip(event, "unknown sprout")
            return

        sprout.water_entries.append(
            WaterEntry(timestamp=event.timestamp, content=event.content, prompt=event.prompt)
        )
        if not sprout.is_active:
            return

        limit = self.constants.water_credits_per_sprout_per_day
        if limit is not None:
            key = (event.sprout_id, self.calendar_day(event))
            if self.water_credits[key] >= limit:
                logger.debug(
                    "Water credit limit reached for sprout",
                    extra={"sprout_id": event.sprout_id, "day": str(key[1])},
                )
                return
            self.water_credits[key] += 1
        self.credit(self.constants.water_recovery)

    def sprout_harvested(self, event: SproutHarvested) -> None:
        sprout = self.state.sprouts.get(event.sprout_id)
        step = transition(sprout.state if sprout else None, EventType.SPROUT_HARVESTED)
        if not step.applied:
            if step.outcome is TransitionOutcome.IGNORED_TERMINAL:
                self.skip(event, f"contradictory terminal event: {step.reason}")
            else:
                self.skip(event, step.reason)
            return

        sprout.state = step.state
        sprout.result = event.result
        sprout.reflection = event.reflection
        sprout.completed_at = event.timestamp

        s = self.state
        s.soil_capacity = ledger.round_soil(
            min(s.soil_capacity + event.capacity_gained, self.constants.max_capacity), self.places
        )
        self.credit(event.capacity_gained)

    def sprout_uprooted(self, event: SproutUprooted) -> None:
        sprout = self.state.sprouts.get(event.sprout_id)
        step = transition(sprout.state if sprout else None, EventType.SPROUT_UPROOTED)
        if not step.applied:
            if step.outcome is TransitionOutcome.IGNORED_TERMINAL:
                self.skip(event, f"contradictory terminal event: {step.reason}")
            else:
                self.skip(event, step.reason)
            return

        sprout.state = step.state
        sprout.uprooted_at = event.timestamp
        self.credit(event.soil_returned)

    def sun_shone(self, event: SunShone) -> None:
        self.state.sun_entries.append(
            SunEntry(
                timestamp=event.timestamp,
                twig_id=event.twig_id,
                twig_label=event.twig_label,
                content=event.content,
                prompt=event.prompt,
            )
        )
        self.credit(self.constants.sun_recovery)


def derive(
    events: Iterable[Any],
    *,
    constants: Optional[SoilConstants] = None,
    tz: Optional[tzinfo] = None,
) -> DerivedState:
    """Replay events into a DerivedState.

    Args:
        events: Event objects or raw wire mappings, in any order
        constants: Economy table (defaults to the shared table)
        tz: Zone for local-time rules (end dates, water days);
            None means the system's local zone

    Returns:
        The derived state; never raises for bad input
    """
    replay = _Replay(constants or DEFAULT_CONSTANTS, tz)
    events = list(events)
    unique = list(unique_events(events))
    replay.state.skipped += len(events) - len(unique)
    for event in unique:
        replay.apply(event)
    return replay.state


def iter_replay(
    events: Iterable[Any],
    *,
    constants: Optional[SoilConstants] = None,
    tz: Optional[tzinfo] = None,
) -> Iterator[Tuple[Event, DerivedState]]:
    """Replay step by step, yielding each event with the running state.

    The yielded state is the same object on every step and keeps mutating;
    copy out what you need before advancing.
    """
    replay = _Replay(constants or DEFAULT_CONSTANTS, tz)
    for event in unique_events(events):
        replay.apply(event)
        yield event, replay.state


def _now(now: Optional[datetime]) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


def _count_since(events: Iterable[Any], event_type: EventType, boundary: datetime, **match: str) -> int:
    count = 0
    for event in unique_events(events):
        if event.type != event_type.value:
            continue
        if any(getattr(event, attr, None) != value for attr, value in match.items()):
            continue
        moment = parse_timestamp(event.timestamp)
        if moment is not None and moment >= boundary:
            count += 1
    return count


def water_available(
    events: Iterable[Any],
    now: Optional[datetime] = None,
    *,
    constants: Optional[SoilConstants] = None,
    tz: Optional[tzinfo] = None,
) -> int:
    """Waterings left today: daily capacity minus waterings since the daily reset."""
    constants = constants or DEFAULT_CONSTANTS
    boundary = resets.daily_reset(_now(now), tz, constants)
    used = _count_since(events, EventType.SPROUT_WATERED, boundary)
    return max(0, constants.water_daily_capacity - used)


def sun_available(
    events: Iterable[Any],
    now: Optional[datetime] = None,
    *,
    constants: Optional[SoilConstants] = None,
    tz: Optional[tzinfo] = None,
) -> int:
    """Sun reflections left this week."""
    constants = constants or DEFAULT_CONSTANTS
    boundary = resets.weekly_reset(_now(now), tz, constants)
    used = _count_since(events, EventType.SUN_SHONE, boundary)
    return max(0, constants.sun_weekly_capacity - used)


def was_sprout_watered_today(
    events: Iterable[Any],
    sprout_id: str,
    now: Optional[datetime] = None,
    *,
    constants: Optional[SoilConstants] = None,
    tz: Optional[tzinfo] = None,
) -> bool:
    boundary = resets.daily_reset(_now(now), tz, constants or DEFAULT_CONSTANTS)
    return _count_since(events, EventType.SPROUT_WATERED, boundary, sprout_id=sprout_id) > 0


def was_sprout_watered_this_week(
    events: Iterable[Any],
    sprout_id: str,
    now: Optional[datetime] = None,
    *,
    constants: Optional[SoilConstants] = None,
    tz: Optional[tzinfo] = None,
) -> bool:
    boundary = resets.weekly_reset(_now(now), tz, constants or DEFAULT_CONSTANTS)
    return _count_since(events, EventType.SPROUT_WATERED, boundary, sprout_id=sprout_id) > 0


def was_shone_this_week(
    events: Iterable[Any],
    now: Optional[datetime] = None,
    *,
    twig_id: Optional[str] = None,
    constants: Optional[SoilConstants] = None,
    tz: Optional[tzinfo] = None,
) -> bool:
    """Whether any sun reflection (optionally on ``twig_id``) happened this week."""
    boundary = resets.weekly_reset(_now(now), tz, constants or DEFAULT_CONSTANTS)
    match = {"twig_id": twig_id} if twig_id is not None else {}
    return _count_since(events, EventType.SUN_SHONE, boundary, **match) > 0


def resource_state(
    events: Iterable[Any],
    now: Optional[datetime] = None,
    *,
    constants: Optional[SoilConstants] = None,
    tz: Optional[tzinfo] = None,
    state: Optional[DerivedState] = None,
) -> ResourceState:
    """All four resources at ``now``.

    Pass an already derived ``state`` to avoid replaying the log twice.
    """
    events = list(events)
    constants = constants or DEFAULT_CONSTANTS
    now = _now(now)
    if state is None:
        state = derive(events, constants=constants, tz=tz)
    return ResourceState(
        soil_capacity=state.soil_capacity,
        soil_available=state.soil_available,
        water_available=water_available(events, now, constants=constants, tz=tz),
        sun_available=sun_available(events, now, constants=constants, tz=tz),
    )
