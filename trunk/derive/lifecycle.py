"""
Sprout lifecycle state machine.

    sprout_planted        sprout_harvested (any result)
    ─────────────▶ active ─────────────────────────────▶ completed
                     │
                     │ sprout_uprooted
                     └─────────────────────────────────▶ uprooted

There is no draft state and no failed state: a harvest with result 1 is
still a completion. Both terminal states are final.

Invariants:
    - transition() is total and never raises
    - No transition leaves a terminal state
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..events.types import EventType


class SproutState(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    UPROOTED = "uprooted"

    @property
    def is_terminal(self) -> bool:
        return self is not SproutState.ACTIVE


class TransitionOutcome(str, Enum):
    """Result of applying an event to a sprout's state."""

    APPLIED = "applied"
    IGNORED_TERMINAL = "ignored_terminal"
    INVALID = "invalid"


@dataclass(frozen=True)
class Transition:
    """Outcome of a lifecycle step.

    Attributes:
        outcome: Whether the event was applied
        state: State after the step (unchanged unless applied)
        reason: Short explanation when not applied
    """

    outcome: TransitionOutcome
    state: Optional[SproutState]
    reason: str = ""

    @property
    def applied(self) -> bool:
        return self.outcome is TransitionOutcome.APPLIED


_TERMINAL_TARGETS = {
    EventType.SPROUT_HARVESTED.value: SproutState.COMPLETED,
    EventType.SPROUT_UPROOTED.value: SproutState.UPROOTED,
}


def transition(current: Optional[SproutState], event_type: str) -> Transition:
    """Apply a lifecycle event type to the current state.

    Args:
        current: Current state, or None for a sprout that does not exist yet
        event_type: Wire type of the event

    Returns:
        The outcome; the caller decides how to log anomalies
    """
    event_type = getattr(event_type, "value", event_type)

    if event_type == EventType.SPROUT_PLANTED.value:
        if current is None:
            return Transition(TransitionOutcome.APPLIED, SproutState.ACTIVE)
        return Transition(TransitionOutcome.INVALID, current, "sprout already planted")

    if event_type == EventType.SPROUT_WATERED.value:
        if current is None:
            return Transition(TransitionOutcome.INVALID, None, "unknown sprout")
        # Watering records an entry but never changes state
        return Transition(TransitionOutcome.APPLIED, current)

    target = _TERMINAL_TARGETS.get(event_type)
    if target is None:
        return Transition(TransitionOutcome.INVALID, current, f"not a lifecycle event: {event_type}")
    if current is None:
        return Transition(TransitionOutcome.INVALID, None, "unknown sprout")
    if current.is_terminal:
        return Transition(TransitionOutcome.IGNORED_TERMINAL, current, f"sprout already {current.value}")
    return Transition(TransitionOutcome.APPLIED, target)
