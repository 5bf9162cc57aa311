"""
Deterministic derivation of state from the event log.

- ledger: pure soil arithmetic and the economy formulas
- resets: daily and weekly reset boundaries, water days, end dates
- lifecycle: the sprout state machine
- state: derived entities and the canonical rendering
- engine: derive() and the time-gated resource queries
- history: soil log, watering streak and water journal
"""

from .engine import (
    derive,
    iter_replay,
    resource_state,
    sort_events,
    sun_available,
    unique_events,
    was_shone_this_week,
    was_sprout_watered_this_week,
    was_sprout_watered_today,
    water_available,
)
from .history import (
    SoilLogEntry,
    WaterLogEntry,
    WateringStreak,
    all_water_entries,
    soil_log,
    watering_streak,
)
from .lifecycle import SproutState, Transition, TransitionOutcome, transition
from .state import DerivedState, Leaf, ResourceState, Sprout, SunEntry, WaterEntry

__all__ = [
    # Engine
    "derive",
    "iter_replay",
    "sort_events",
    "unique_events",
    "water_available",
    "sun_available",
    "resource_state",
    "was_sprout_watered_today",
    "was_sprout_watered_this_week",
    "was_shone_this_week",
    # Entities
    "DerivedState",
    "Sprout",
    "Leaf",
    "SunEntry",
    "WaterEntry",
    "ResourceState",
    # Lifecycle
    "SproutState",
    "Transition",
    "TransitionOutcome",
    "transition",
    # History
    "SoilLogEntry",
    "WaterLogEntry",
    "WateringStreak",
    "soil_log",
    "watering_streak",
    "all_water_entries",
]
