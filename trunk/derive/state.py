"""
Derived entities.

Everything here is computed by replaying the event log and is never
persisted on its own. ``DerivedState.to_dict()`` is the canonical rendering
used by the shared fixture suite; ``fingerprint()`` hashes it so two
clients can compare results cheaply.

Invariants:
    - 0 <= soil_available <= soil_capacity <= max_capacity
    - Sprout end_date is fixed at planting and never recomputed
    - to_dict() output is JSON-serializable and order-independent
      under sort_keys
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .lifecycle import SproutState


@dataclass(frozen=True)
class WaterEntry:
    """One watering journal entry."""

    timestamp: str
    content: str
    prompt: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"timestamp": self.timestamp, "content": self.content, "prompt": self.prompt}


@dataclass(frozen=True)
class SunEntry:
    """One weekly sun reflection on a twig."""

    timestamp: str
    twig_id: str
    twig_label: str
    content: str
    prompt: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "twig_id": self.twig_id,
            "twig_label": self.twig_label,
            "content": self.content,
            "prompt": self.prompt,
        }


@dataclass(frozen=True)
class Leaf:
    """A named saga grouping related sprouts on a twig."""

    id: str
    twig_id: str
    name: str
    created_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "twig_id": self.twig_id, "name": self.name, "created_at": self.created_at}


@dataclass
class Sprout:
    """A goal and everything recorded against it.

    Mutable only while the derivation engine replays; consumers treat it as
    read-only.
    """

    id: str
    twig_id: str
    title: str
    season: str
    environment: str
    soil_cost: float
    created_at: str
    end_date: Optional[str]
    state: SproutState = SproutState.ACTIVE
    leaf_id: Optional[str] = None
    bloom_wither: Optional[str] = None
    bloom_budding: Optional[str] = None
    bloom_flourish: Optional[str] = None
    result: Optional[int] = None
    reflection: Optional[str] = None
    completed_at: Optional[str] = None
    uprooted_at: Optional[str] = None
    water_entries: List[WaterEntry] = field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.state is SproutState.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "twig_id": self.twig_id,
            "leaf_id": self.leaf_id,
            "title": self.title,
            "season": self.season,
            "environment": self.environment,
            "state": self.state.value,
            "soil_cost": self.soil_cost,
            "result": self.result,
            "reflection": self.reflection,
            "created_at": self.created_at,
            "end_date": self.end_date,
            "completed_at": self.completed_at,
            "uprooted_at": self.uprooted_at,
            "bloom_wither": self.bloom_wither,
            "bloom_budding": self.bloom_budding,
            "bloom_flourish": self.bloom_flourish,
            "water_entries": [entry.to_dict() for entry in self.water_entries],
        }


@dataclass(frozen=True)
class ResourceState:
    """Snapshot of all four resources at a moment in time."""

    soil_capacity: float
    soil_available: float
    water_available: int
    sun_available: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "soil_capacity": self.soil_capacity,
            "soil_available": self.soil_available,
            "water_available": self.water_available,
            "sun_available": self.sun_available,
        }


@dataclass
class DerivedState:
    """Complete state computed from an event log.

    Attributes:
        soil_capacity: Current soil capacity
        soil_available: Soil available to spend
        sprouts: sprout id -> Sprout, in planting order
        leaves: leaf id -> Leaf, in creation order
        sun_entries: Sun reflections in replay order
        skipped: Number of events dropped during replay
    """

    soil_capacity: float
    soil_available: float
    sprouts: Dict[str, Sprout] = field(default_factory=dict)
    leaves: Dict[str, Leaf] = field(default_factory=dict)
    sun_entries: List[SunEntry] = field(default_factory=list)
    skipped: int = 0

    def can_afford(self, cost: float) -> bool:
        return self.soil_available >= cost

    def get_sprout(self, sprout_id: str) -> Optional[Sprout]:
        return self.sprouts.get(sprout_id)

    def get_leaf(self, leaf_id: str) -> Optional[Leaf]:
        return self.leaves.get(leaf_id)

    def sprouts_for_twig(self, twig_id: str) -> List[Sprout]:
        return [s for s in self.sprouts.values() if s.twig_id == twig_id]

    def active_sprouts_for_twig(self, twig_id: str) -> List[Sprout]:
        return [s for s in self.sprouts.values() if s.twig_id == twig_id and s.is_active]

    def sprouts_for_leaf(self, leaf_id: str) -> List[Sprout]:
        return [s for s in self.sprouts.values() if s.leaf_id == leaf_id]

    def leaves_for_twig(self, twig_id: str) -> List[Leaf]:
        return [leaf for leaf in self.leaves.values() if leaf.twig_id == twig_id]

    def active_sprouts(self) -> List[Sprout]:
        return [s for s in self.sprouts.values() if s.is_active]

    def completed_sprouts(self) -> List[Sprout]:
        """Harvested sprouts; uprooted ones never appear in history views."""
        return [s for s in self.sprouts.values() if s.state is SproutState.COMPLETED]

    def to_dict(self) -> Dict[str, Any]:
        """Canonical JSON-ready rendering (excludes time-dependent water/sun)."""
        return {
            "soil_capacity": self.soil_capacity,
            "soil_available": self.soil_available,
            "sprouts": {sid: sprout.to_dict() for sid, sprout in self.sprouts.items()},
            "leaves": {lid: leaf.to_dict() for lid, leaf in self.leaves.items()},
            "sun_entries": [entry.to_dict() for entry in self.sun_entries],
        }

    def fingerprint(self) -> str:
        """sha256 of the canonical rendering."""
        payload = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()
