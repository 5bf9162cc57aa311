"""
Unit tests for event types and the event log.

Tests cover:
- Wire format (camelCase, omitted optionals)
- Validation of every event type
- Timestamp parsing and formatting
- EventLog dedup by client_id and the fallback key
"""

from datetime import datetime, timezone

import pytest

from trunk.derive import derive
from trunk.errors import EventValidationError
from trunk.events import (
    EventLog,
    SproutHarvested,
    SproutPlanted,
    SproutWatered,
    format_timestamp,
    new_client_id,
    parse_event,
    parse_timestamp,
    validate_event,
)
from tests.helpers import harvested, planted, shone, ts, watered


class TestWireFormat:
    """Tests for to_dict / parse_event."""

    def test_planted_to_dict(self):
        event = planted(client_id="c-1")
        data = event.to_dict()

        assert data["type"] == "sprout_planted"
        assert data["client_id"] == "c-1"
        assert data["sproutId"] == "sprout-1"
        assert data["twigId"] == "branch-0-twig-0"
        assert data["soilCost"] == 2.0
        assert "leafId" not in data
        assert "bloomWither" not in data

    def test_parse_roundtrip(self):
        event = harvested(reflection="Felt great")
        assert parse_event(event.to_dict()) == event

    def test_parse_sun_shone(self):
        data = {
            "type": "sun_shone",
            "timestamp": "2026-01-15T10:00:00.000Z",
            "client_id": "c-9",
            "twigId": "branch-1-twig-2",
            "twigLabel": "reasoning",
            "content": "Thinking about thinking",
        }
        event = parse_event(data)
        assert event.twig_id == "branch-1-twig-2"
        assert event.entity_id == "branch-1-twig-2"
        assert event.prompt is None

    def test_missing_client_id_is_deterministic(self):
        """A wire event without client_id dedups on type, entity and time."""
        data = {
            "type": "sprout_watered",
            "timestamp": "2026-01-15T18:30:00.000Z",
            "sproutId": "sprout-1",
            "content": "Ran before dinner",
        }
        first = parse_event(data)
        second = parse_event(dict(data))
        assert first.client_id == second.client_id
        assert first.client_id == "sprout_watered|sprout-1|2026-01-15T18:30:00.000Z"

    def test_missing_client_id_redelivery_counted_once(self):
        plant = planted(client_id="p1").to_dict()
        water = {
            "type": "sprout_watered",
            "timestamp": "2026-01-15T18:30:00.000Z",
            "sproutId": "sprout-1",
            "content": "Ran before dinner",
        }
        state = derive([plant, water, dict(water)], tz=timezone.utc)
        assert len(state.sprouts["sprout-1"].water_entries) == 1
        assert state.skipped == 1

    def test_explicit_client_id_kept(self):
        data = watered(client_id="w-7").to_dict()
        assert parse_event(data).client_id == "w-7"

    def test_client_id_generated(self):
        first = watered()
        second = watered()
        assert first.client_id != second.client_id

    def test_integer_amounts_become_floats(self):
        event = planted(soil_cost=3)
        assert isinstance(event.soil_cost, float)

    def test_entity_ids(self):
        assert planted().entity_id == "sprout-1"
        assert shone().entity_id == "branch-0-twig-0"


class TestValidation:
    """Tests for event validation."""

    def test_unknown_type(self):
        with pytest.raises(EventValidationError) as exc_info:
            parse_event({"type": "sprout_pruned", "timestamp": ts()})
        assert exc_info.value.code == "EVENT_INVALID"

    def test_not_a_mapping(self):
        with pytest.raises(EventValidationError):
            parse_event(["sprout_planted"])

    def test_missing_field(self):
        with pytest.raises(EventValidationError) as exc_info:
            parse_event({"type": "sprout_watered", "timestamp": ts(), "content": "x"})
        assert exc_info.value.field_name == "sprout_id"

    @pytest.mark.parametrize("result", [0, 6, 2.5, "5", True])
    def test_harvest_result_range(self, result):
        with pytest.raises(EventValidationError):
            SproutHarvested(timestamp=ts(), sprout_id="s", result=result, capacity_gained=1.0)

    def test_harvest_result_one_is_valid(self):
        event = SproutHarvested(timestamp=ts(), sprout_id="s", result=1, capacity_gained=0.1)
        assert event.result == 1

    def test_negative_amount(self):
        with pytest.raises(EventValidationError):
            planted(soil_cost=-1)

    def test_unknown_season(self):
        with pytest.raises(EventValidationError):
            planted(season="5y")

    def test_unknown_environment(self):
        with pytest.raises(EventValidationError):
            planted(environment="tundra")

    def test_empty_sprout_id(self):
        with pytest.raises(EventValidationError):
            SproutWatered(timestamp=ts(), sprout_id="", content="x")

    def test_empty_content_allowed(self):
        assert SproutWatered(timestamp=ts(), sprout_id="s", content="").content == ""

    def test_validate_event(self):
        assert validate_event(planted().to_dict())
        assert not validate_event({"type": "sprout_planted"})
        assert not validate_event(None)

    def test_immutable(self):
        event = planted()
        with pytest.raises(AttributeError):
            event.title = "changed"

    def test_keyword_only(self):
        with pytest.raises(TypeError):
            SproutPlanted(ts(), "c", "s", "t", "title", "2w", "fertile", 2)


class TestTimestamps:
    """Tests for timestamp helpers."""

    def test_parse_zulu(self):
        assert parse_timestamp("2026-01-15T10:00:00.000Z") == datetime(2026, 1, 15, 10, tzinfo=timezone.utc)

    def test_parse_offset(self):
        parsed = parse_timestamp("2026-01-15T12:00:00+02:00")
        assert parsed == datetime(2026, 1, 15, 10, tzinfo=timezone.utc)

    def test_parse_naive_as_utc(self):
        assert parse_timestamp("2026-01-15T10:00:00") == datetime(2026, 1, 15, 10, tzinfo=timezone.utc)

    @pytest.mark.parametrize(
        "value",
        ["", "yesterday", None, 1234, "2026-13-40T00:00:00Z", "0001-01-01T00:00:00+01:00"],
    )
    def test_parse_invalid(self, value):
        assert parse_timestamp(value) is None

    def test_format_milliseconds(self):
        moment = datetime(2026, 1, 15, 10, 0, 0, 123456, tzinfo=timezone.utc)
        assert format_timestamp(moment) == "2026-01-15T10:00:00.123Z"


class TestEventLog:
    """Tests for EventLog."""

    def test_append_dedups_by_client_id(self):
        log = EventLog()
        event = watered(client_id="c-1")

        assert log.append(event) is True
        assert log.append(event) is False
        assert len(log) == 1

    def test_same_timestamp_different_ids_kept(self):
        """Dedup never looks at timestamps."""
        log = EventLog()
        log.append(watered(at=60, client_id="a"))
        log.append(watered(at=60, client_id="b"))
        assert len(log) == 2

    def test_merge_returns_added(self):
        log = EventLog([watered(client_id="a")])
        added = log.merge([watered(client_id="a"), watered(client_id="b")])

        assert [e.client_id for e in added] == ["b"]
        assert log.client_ids() == {"a", "b"}

    def test_merge_idempotent(self):
        events = [watered(client_id=new_client_id()) for _ in range(3)]
        log = EventLog(events)
        log.merge(events)
        assert log.events == tuple(events)

    def test_contains_and_get(self):
        event = planted(client_id="p")
        log = EventLog([event])
        assert "p" in log
        assert log.get("p") is event
        assert log.get("missing") is None
