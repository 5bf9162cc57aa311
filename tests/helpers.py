"""
Event builders shared by the test suite.

Timestamps are UTC wire strings; tests that depend on local time pass
tz=timezone.utc to the code under test.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from trunk.events import (
    LeafCreated,
    SproutHarvested,
    SproutPlanted,
    SproutUprooted,
    SproutWatered,
    SunShone,
    format_timestamp,
)

UTC = timezone.utc
T0 = datetime(2026, 1, 15, 10, 0, 0, tzinfo=UTC)  # a Thursday
TWIG = "branch-0-twig-0"


def ts(offset_seconds: float = 0, base: datetime = T0) -> str:
    return format_timestamp(base + timedelta(seconds=offset_seconds))


def planted(sprout_id="sprout-1", at=0, soil_cost=2, season="2w", environment="fertile", **kwargs):
    return SproutPlanted(
        timestamp=ts(at),
        sprout_id=sprout_id,
        twig_id=kwargs.pop("twig_id", TWIG),
        title=kwargs.pop("title", "Run a 5k"),
        season=season,
        environment=environment,
        soil_cost=soil_cost,
        **kwargs,
    )


def watered(sprout_id="sprout-1", at=60, content="Went running", **kwargs):
    return SproutWatered(timestamp=ts(at), sprout_id=sprout_id, content=content, **kwargs)


def harvested(sprout_id="sprout-1", at=120, result=5, capacity_gained=1.0, **kwargs):
    return SproutHarvested(
        timestamp=ts(at),
        sprout_id=sprout_id,
        result=result,
        capacity_gained=capacity_gained,
        **kwargs,
    )


def uprooted(sprout_id="sprout-1", at=120, soil_returned=0.5, **kwargs):
    return SproutUprooted(timestamp=ts(at), sprout_id=sprout_id, soil_returned=soil_returned, **kwargs)


def shone(twig_id=TWIG, at=90, content="A good week", **kwargs):
    return SunShone(
        timestamp=ts(at),
        twig_id=twig_id,
        twig_label=kwargs.pop("twig_label", "movement"),
        content=content,
        **kwargs,
    )


def leaf(leaf_id="leaf-1", at=0, name="Marathon training", **kwargs):
    return LeafCreated(timestamp=ts(at), leaf_id=leaf_id, twig_id=kwargs.pop("twig_id", TWIG), name=name, **kwargs)
