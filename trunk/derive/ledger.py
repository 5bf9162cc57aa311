"""
Resource ledger: pure soil arithmetic.

Every quantity that ends up in derived state passes through round_soil so
that independently implemented clients agree to the cent. Rounding uses
decimal half-up on the value's shortest repr, which matches what a
``Math.round(v * 100) / 100`` client produces for every value the economy
can generate.

Invariants:
    - Functions are pure; the constants table is an explicit argument
    - credit() never exceeds capacity, debit() never goes below zero
    - harvest_reward() never pushes capacity above max_capacity

How to change safely:
    - Changing a formula changes derived state; bump DERIVATION_VERSION
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from ..config import DEFAULT_CONSTANTS, SoilConstants
from ..errors import LedgerError


def round_soil(value: float, places: int = 2) -> float:
    """Round a soil quantity to ``places`` decimals, half away from zero."""
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))


def credit(available: float, amount: float, capacity: float, places: int = 2) -> float:
    """Add ``amount`` to ``available``, capped at ``capacity``."""
    return round_soil(min(available + amount, capacity), places)


def debit(available: float, amount: float, places: int = 2) -> float:
    """Subtract ``amount`` from ``available``, floored at zero."""
    return round_soil(max(0.0, available - amount), places)


def _environment_multiplier(environment: str, constants: SoilConstants) -> float:
    try:
        return constants.environment_multipliers[environment]
    except KeyError:
        raise LedgerError(f"Unknown environment: {environment!r}", value=environment) from None


def _result_multiplier(result: int, constants: SoilConstants) -> float:
    try:
        return constants.result_multipliers[result]
    except (KeyError, TypeError):
        raise LedgerError(f"Result must be an integer 1..5, got {result!r}", value=result) from None


def planting_cost(season: str, environment: str, constants: SoilConstants = DEFAULT_CONSTANTS) -> float:
    """Soil spent to plant a sprout.

    Raises:
        LedgerError: If season or environment is unknown
    """
    costs = constants.planting_costs.get(season)
    if costs is None:
        raise LedgerError(f"Unknown season: {season!r}", value=season)
    if environment not in costs:
        raise LedgerError(f"Unknown environment: {environment!r}", value=environment)
    return float(costs[environment])


def season_base_reward(season: str, constants: SoilConstants = DEFAULT_CONSTANTS) -> float:
    spec = constants.seasons.get(season)
    if spec is None:
        raise LedgerError(f"Unknown season: {season!r}", value=season)
    return spec.base_reward


def capacity_gain(
    base_cost: float,
    environment: str,
    result: int,
    constants: SoilConstants = DEFAULT_CONSTANTS,
) -> float:
    """Undiminished capacity gain: base x environment x result multiplier."""
    value = base_cost * _environment_multiplier(environment, constants) * _result_multiplier(result, constants)
    return round_soil(value, constants.decimal_places)


def harvest_reward(
    season: str,
    environment: str,
    result: int,
    current_capacity: float,
    constants: SoilConstants = DEFAULT_CONSTANTS,
) -> float:
    """Capacity gained by harvesting, with diminishing returns.

    The undiminished gain is scaled by ``(1 - current/max) ** exponent`` so
    growth slows toward zero near the ceiling, then clamped so that
    ``current_capacity + reward`` never exceeds ``max_capacity``. This is
    the value a client stores as ``capacityGained`` on the harvest event.
    """
    base = season_base_reward(season, constants)
    env_mult = _environment_multiplier(environment, constants)
    result_mult = _result_multiplier(result, constants)
    headroom = max(0.0, 1 - current_capacity / constants.max_capacity)
    factor = headroom ** constants.diminishing_exponent
    reward = base * env_mult * result_mult * factor
    reward = min(reward, max(0.0, constants.max_capacity - current_capacity))
    return round_soil(reward, constants.decimal_places)


def uproot_refund(soil_cost: float, constants: SoilConstants = DEFAULT_CONSTANTS) -> float:
    """Soil returned when a sprout is uprooted."""
    if soil_cost < 0:
        raise LedgerError(f"Soil cost must be non-negative, got {soil_cost!r}", value=soil_cost)
    return round_soil(soil_cost * constants.uproot_refund_rate, constants.decimal_places)
