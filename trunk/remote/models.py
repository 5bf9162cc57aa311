"""
Wire models for the remote event store.

A stored row wraps one event:

    {
        "id": "b5e2...",                    # server assigned
        "user_id": "user-1",
        "type": "sprout_watered",
        "payload": {...},                   # the event's wire form
        "client_id": "2f1c...",             # dedup key, UNIQUE per user
        "client_timestamp": "2026-01-15T10:00:00.000Z",
        "created_at": "2026-01-15T10:00:01.234567+00:00"  # arrival time
    }

Rows from the network are validated here before anything touches the
local log; a realtime payload that does not have this shape is dropped.
"""

from __future__ import annotations

from typing import Any, Dict, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import EventValidationError
from ..events.types import Event, parse_event


class RemoteEventInsert(BaseModel):
    """Row sent to the remote store; the server adds id and created_at."""

    model_config = ConfigDict(extra="ignore")

    user_id: str = Field(..., min_length=1)
    type: str = Field(..., min_length=1)
    payload: Dict[str, Any]
    client_id: str = Field(..., min_length=1)
    client_timestamp: str

    @classmethod
    def from_event(cls, event: Event, user_id: str) -> RemoteEventInsert:
        return cls(
            user_id=user_id,
            type=event.type,
            payload=event.to_dict(),
            client_id=event.client_id,
            client_timestamp=event.timestamp,
        )


class RemoteEventRow(RemoteEventInsert):
    """Row as stored and returned by the remote store."""

    id: Union[str, int]
    created_at: str = Field(..., min_length=1)

    def to_event(self) -> Event:
        """Rebuild the typed event from the stored payload.

        The row's columns fill in anything an older client left out of the
        payload.

        Raises:
            EventValidationError: If the payload is not a valid event
        """
        data = dict(self.payload)
        data.setdefault("type", self.type)
        data.setdefault("client_id", self.client_id)
        data.setdefault("timestamp", self.client_timestamp)
        return parse_event(data)


def parse_row(data: Any) -> RemoteEventRow:
    """Validate an untrusted row (pull response or realtime payload).

    Raises:
        EventValidationError: If the row does not have the stored-row shape
    """
    try:
        return RemoteEventRow.model_validate(data)
    except ValidationError as e:
        raise EventValidationError(f"Invalid remote row: {e.error_count()} error(s)") from e
