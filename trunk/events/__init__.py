"""
Event model and in-memory event log.

Events are the only persisted unit of change. This package defines the
typed event union, its wire form and the append-only log that holds a
device's copy of the shared history.
"""

from .log import EventLog
from .types import (
    EVENT_CLASSES,
    VALID_EVENT_TYPES,
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
    new_client_id,
    new_leaf_id,
    new_sprout_id,
    parse_event,
    parse_timestamp,
    utc_now_iso,
    validate_event,
)

__all__ = [
    # Types
    "BaseEvent",
    "Event",
    "EventType",
    "LeafCreated",
    "SproutPlanted",
    "SproutWatered",
    "SproutHarvested",
    "SproutUprooted",
    "SunShone",
    "EVENT_CLASSES",
    "VALID_EVENT_TYPES",
    # Parsing
    "parse_event",
    "validate_event",
    "parse_timestamp",
    "format_timestamp",
    "utc_now_iso",
    # Ids
    "new_client_id",
    "new_sprout_id",
    "new_leaf_id",
    # Log
    "EventLog",
]
