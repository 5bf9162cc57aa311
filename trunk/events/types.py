"""
Event model for Trunk.

Events are the only unit of persisted change. Each event is an immutable
record of one user action, stamped by the device that produced it with an
ISO-8601 timestamp and a random client id. The client id is the canonical
deduplication key everywhere: in the local log, in the remote store's
uniqueness constraint and in derivation.

Wire format (camelCase, shared by every client):
    {
        "type": "sprout_watered",
        "client_id": "2f1c...",
        "timestamp": "2026-01-15T10:00:00.000Z",
        "sproutId": "sprout-9a7e...",
        "content": "Ran 5k"
    }

Invariants:
    - Events are frozen; corrections are new events
    - Every event has a non-empty client_id and timestamp
    - Timestamps are not required to parse; unparseable ones sort last

How to change safely:
    - New event types need a dataclass here, a branch in the derivation
      engine and a fixture case
    - Never rename wire keys; add optional keys instead
"""

from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Mapping, Union

from ..config import DEFAULT_CONSTANTS
from ..errors import EventValidationError


class EventType(str, Enum):
    """Discriminator values of the event union."""

    LEAF_CREATED = "leaf_created"
    SPROUT_PLANTED = "sprout_planted"
    SPROUT_WATERED = "sprout_watered"
    SPROUT_HARVESTED = "sprout_harvested"
    SPROUT_UPROOTED = "sprout_uprooted"
    SUN_SHONE = "sun_shone"


VALID_EVENT_TYPES = frozenset(t.value for t in EventType)


def new_client_id() -> str:
    """128-bit random id for a new event."""
    return str(uuid.uuid4())


def new_sprout_id() -> str:
    return f"sprout-{uuid.uuid4()}"


def new_leaf_id() -> str:
    return f"leaf-{uuid.uuid4()}"


def fallback_client_id(event_type: str, data: Mapping[str, Any]) -> str:
    """Deterministic dedup key for a wire event that carries no client_id.

    Built from the type, the first entity id present (sprout, leaf, twig)
    and the timestamp, so repeated deliveries of one event collapse.
    """
    entity = ""
    for key in ("sproutId", "leafId", "twigId"):
        if key in data:
            entity = str(data[key])
            break
    return f"{event_type}|{entity}|{data.get('timestamp', '')}"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp into an aware UTC datetime.

    Naive timestamps are read as UTC. Returns None instead of raising for
    anything that cannot be parsed.
    """
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        # Offsets near datetime.min/max overflow on conversion
        return parsed.astimezone(timezone.utc)
    except (ValueError, OverflowError):
        return None


def format_timestamp(value: datetime) -> str:
    """Render a datetime in the wire format (UTC, millisecond precision)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def utc_now_iso() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def _wire_key(attr: str) -> str:
    if attr == "client_id":
        return attr
    head, *rest = attr.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


@dataclass(frozen=True, kw_only=True)
class BaseEvent:
    """Fields shared by every event.

    Attributes:
        timestamp: ISO-8601 time stamped by the producing device
        client_id: Random unique id; the dedup key across devices
    """

    event_type: ClassVar[EventType]

    timestamp: str
    client_id: str = dataclasses.field(default_factory=new_client_id)

    def __post_init__(self) -> None:
        self._require_str("timestamp")
        self._require_str("client_id")
        self.validate()

    def validate(self) -> None:
        """Type-specific validation; raise EventValidationError on failure."""

    @property
    def type(self) -> str:
        return self.event_type.value

    @property
    def entity_id(self) -> str:
        """Id of the stream (sprout, leaf or twig) this event belongs to."""
        raise NotImplementedError

    def _fail(self, message: str, field_name: str) -> None:
        raise EventValidationError(message, event_type=self.type, field_name=field_name)

    def _require_str(self, name: str, optional: bool = False) -> None:
        value = getattr(self, name)
        if value is None and optional:
            return
        if not isinstance(value, str) or not value:
            self._fail(f"{self.type}: '{_wire_key(name)}' must be a non-empty string", name)

    def _optional_text(self, name: str) -> None:
        value = getattr(self, name)
        if value is not None and not isinstance(value, str):
            self._fail(f"{self.type}: '{_wire_key(name)}' must be a string", name)

    def _require_amount(self, name: str) -> None:
        value = getattr(self, name)
        if not _is_number(value) or value != value or value < 0:
            self._fail(f"{self.type}: '{_wire_key(name)}' must be a non-negative number", name)
        object.__setattr__(self, name, float(value))

    def to_dict(self) -> dict[str, Any]:
        """Wire representation; optional fields that are None are omitted."""
        data: dict[str, Any] = {"type": self.type}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            data[_wire_key(f.name)] = value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> BaseEvent:
        kwargs: dict[str, Any] = {}
        for f in dataclasses.fields(cls):
            key = _wire_key(f.name)
            if key in data:
                kwargs[f.name] = data[key]
            elif f.default is dataclasses.MISSING and f.default_factory is dataclasses.MISSING:
                raise EventValidationError(
                    f"{cls.event_type.value}: missing required field '{key}'",
                    event_type=cls.event_type.value,
                    field_name=f.name,
                )
        if not data.get("client_id"):
            # Events written before client ids existed dedup on what they describe
            kwargs["client_id"] = fallback_client_id(cls.event_type.value, data)
        return cls(**kwargs)


@dataclass(frozen=True, kw_only=True)
class LeafCreated(BaseEvent):
    """A new leaf (saga) was started on a twig."""

    event_type: ClassVar[EventType] = EventType.LEAF_CREATED

    leaf_id: str
    twig_id: str
    name: str

    def validate(self) -> None:
        self._require_str("leaf_id")
        self._require_str("twig_id")
        self._require_str("name")

    @property
    def entity_id(self) -> str:
        return self.leaf_id


@dataclass(frozen=True, kw_only=True)
class SproutPlanted(BaseEvent):
    """A sprout was planted; soil is spent and the sprout becomes active.

    The event snapshots everything needed to render the sprout so that
    replay never depends on state outside the log.
    """

    event_type: ClassVar[EventType] = EventType.SPROUT_PLANTED

    sprout_id: str
    twig_id: str
    title: str
    season: str
    environment: str
    soil_cost: float
    leaf_id: str | None = None
    bloom_wither: str | None = None
    bloom_budding: str | None = None
    bloom_flourish: str | None = None

    def validate(self) -> None:
        self._require_str("sprout_id")
        self._require_str("twig_id")
        self._require_str("title")
        self._require_str("leaf_id", optional=True)
        if self.season not in DEFAULT_CONSTANTS.seasons:
            self._fail(f"sprout_planted: unknown season {self.season!r}", "season")
        if self.environment not in DEFAULT_CONSTANTS.environment_multipliers:
            self._fail(f"sprout_planted: unknown environment {self.environment!r}", "environment")
        self._require_amount("soil_cost")
        for name in ("bloom_wither", "bloom_budding", "bloom_flourish"):
            self._optional_text(name)

    @property
    def entity_id(self) -> str:
        return self.sprout_id


@dataclass(frozen=True, kw_only=True)
class SproutWatered(BaseEvent):
    """A daily journal entry on a sprout."""

    event_type: ClassVar[EventType] = EventType.SPROUT_WATERED

    sprout_id: str
    content: str
    prompt: str | None = None

    def validate(self) -> None:
        self._require_str("sprout_id")
        if not isinstance(self.content, str):
            self._fail("sprout_watered: 'content' must be a string", "content")
        self._optional_text("prompt")

    @property
    def entity_id(self) -> str:
        return self.sprout_id


@dataclass(frozen=True, kw_only=True)
class SproutHarvested(BaseEvent):
    """A sprout was completed.

    There is no failed state: every harvest is a completion and ``result``
    (1..5) only grades it. ``capacity_gained`` is computed by the producing
    client at harvest time.
    """

    event_type: ClassVar[EventType] = EventType.SPROUT_HARVESTED

    sprout_id: str
    result: int
    capacity_gained: float
    reflection: str | None = None

    def validate(self) -> None:
        self._require_str("sprout_id")
        if not _is_number(self.result) or int(self.result) != self.result or not 1 <= self.result <= 5:
            self._fail("sprout_harvested: 'result' must be an integer 1..5", "result")
        object.__setattr__(self, "result", int(self.result))
        self._require_amount("capacity_gained")
        self._optional_text("reflection")

    @property
    def entity_id(self) -> str:
        return self.sprout_id


@dataclass(frozen=True, kw_only=True)
class SproutUprooted(BaseEvent):
    """A sprout was abandoned; part of its soil cost is returned."""

    event_type: ClassVar[EventType] = EventType.SPROUT_UPROOTED

    sprout_id: str
    soil_returned: float

    def validate(self) -> None:
        self._require_str("sprout_id")
        self._require_amount("soil_returned")

    @property
    def entity_id(self) -> str:
        return self.sprout_id


@dataclass(frozen=True, kw_only=True)
class SunShone(BaseEvent):
    """A weekly reflection on a twig."""

    event_type: ClassVar[EventType] = EventType.SUN_SHONE

    twig_id: str
    twig_label: str
    content: str
    prompt: str | None = None

    def validate(self) -> None:
        self._require_str("twig_id")
        self._require_str("twig_label")
        if not isinstance(self.content, str):
            self._fail("sun_shone: 'content' must be a string", "content")
        self._optional_text("prompt")

    @property
    def entity_id(self) -> str:
        return self.twig_id


Event = Union[LeafCreated, SproutPlanted, SproutWatered, SproutHarvested, SproutUprooted, SunShone]

EVENT_CLASSES: dict[str, type[BaseEvent]] = {
    cls.event_type.value: cls
    for cls in (LeafCreated, SproutPlanted, SproutWatered, SproutHarvested, SproutUprooted, SunShone)
}


def parse_event(data: Any) -> Event:
    """Build an event from its wire representation.

    Args:
        data: Mapping with a ``type`` discriminator

    Returns:
        The typed event

    Raises:
        EventValidationError: If the type is unknown or a field is invalid
    """
    if not isinstance(data, Mapping):
        raise EventValidationError(f"Event must be an object, got {type(data).__name__}")
    event_type = data.get("type")
    cls = EVENT_CLASSES.get(event_type) if isinstance(event_type, str) else None
    if cls is None:
        raise EventValidationError(f"Unknown event type: {event_type!r}", event_type=str(event_type))
    try:
        return cls.from_dict(data)  # type: ignore[return-value]
    except TypeError as e:
        raise EventValidationError(str(e), event_type=event_type) from e


def validate_event(data: Any) -> bool:
    """Whether ``data`` is a well-formed wire event."""
    try:
        parse_event(data)
    except EventValidationError:
        return False
    return True
