"""
Action Catalog
==============
The closed set of venue action kinds and the one shared function table the
rest of the engine uses to price them.

Every kind is a tagged variant described by ``KindTraits``. Exposure,
capital, fee, slippage and carry are computed here for all kinds, so the
optimizer's search space stays enumerable and deterministic.

Conventions:
- Signed quantity: + long / supplied, - short / borrowed
- Exposure contribution: quantity × price (USD), same sign as quantity
- APRs are percentages (5.0 = 5%), funding is a fraction per hour
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN
from enum import Enum

from src.delta_neutral.types import ActionKind, Asset, Venue, ZERO


HOURS_PER_YEAR = Decimal(8760)
HUNDRED = Decimal(100)


class CarryType(Enum):
    """What drives the holding cost of a position."""

    NONE = "NONE"
    FUNDING = "FUNDING"    # Perp funding, longs pay shorts when positive
    BORROW = "BORROW"      # Pays the venue borrow APR on |notional|
    SUPPLY = "SUPPLY"      # Earns the venue supply APR on |notional|


@dataclass(frozen=True, slots=True)
class KindTraits:
    """Static behaviour of one action kind."""

    can_long: bool
    can_short: bool
    leveraged: bool
    settles_as: ActionKind
    long_carry: CarryType = CarryType.NONE
    short_carry: CarryType = CarryType.NONE


KIND_TRAITS = {
    ActionKind.SPOT: KindTraits(True, False, False, ActionKind.SPOT),
    ActionKind.SWAP: KindTraits(True, False, False, ActionKind.SPOT),
    ActionKind.MARGIN: KindTraits(
        True, True, True, ActionKind.MARGIN,
        long_carry=CarryType.NONE, short_carry=CarryType.BORROW,
    ),
    ActionKind.PERP: KindTraits(
        True, True, True, ActionKind.PERP,
        long_carry=CarryType.FUNDING, short_carry=CarryType.FUNDING,
    ),
    ActionKind.LEND: KindTraits(True, False, False, ActionKind.LEND, long_carry=CarryType.SUPPLY),
    ActionKind.STAKE: KindTraits(True, False, False, ActionKind.STAKE, long_carry=CarryType.SUPPLY),
    ActionKind.BORROW: KindTraits(False, True, True, ActionKind.BORROW, short_carry=CarryType.BORROW),
}


def traits(kind: ActionKind) -> KindTraits:
    return KIND_TRAITS[kind]


def settles_as(kind: ActionKind) -> ActionKind:
    """Ledger bucket a fill of ``kind`` lands in (swaps settle into spot)."""
    return KIND_TRAITS[kind].settles_as


def can_take(kind: ActionKind, direction: int) -> bool:
    """Whether ``kind`` can open exposure with the sign of ``direction``."""
    t = KIND_TRAITS[kind]
    return t.can_long if direction > 0 else t.can_short


# =============================================================================
# SHARED COST / EXPOSURE FUNCTIONS
# =============================================================================


def exposure_contribution(asset: Asset, quantity: Decimal, price: Decimal) -> Decimal:
    """Signed USD exposure of ``quantity`` units. Stable assets contribute zero."""
    if asset.stable or quantity == 0:
        return ZERO
    return quantity * price


def effective_leverage(kind: ActionKind, venue: Venue, cap: Decimal) -> Decimal:
    """Leverage the engine applies to a new position of ``kind`` on ``venue``."""
    if not KIND_TRAITS[kind].leveraged:
        return Decimal(1)
    return max(Decimal(1), min(venue.max_leverage, cap))


def margin_required(notional: Decimal, leverage: Decimal) -> Decimal:
    """Capital locked by a position of ``notional`` USD at ``leverage``."""
    if leverage < 1:
        raise ValueError(f"Invalid leverage {leverage}: must be >= 1")
    return abs(notional) / leverage


def fee_cost(venue: Venue, kind: ActionKind, notional: Decimal) -> Decimal:
    return abs(notional) * venue.fee_rate(kind)


def slippage_cost(notional: Decimal, liquidity_usd: Decimal, coefficient: Decimal) -> Decimal:
    """
    Quadratic price-impact estimate: coefficient × notional² / depth.

    A venue with no reported depth is treated as unable to absorb any size.
    """
    if notional == 0:
        return ZERO
    if liquidity_usd <= 0:
        raise ValueError("No liquidity depth reported")
    return coefficient * notional * notional / liquidity_usd


def carry_cost(
    kind: ActionKind,
    signed_notional: Decimal,
    horizon_hours: Decimal,
    funding_rate_hourly: Decimal = ZERO,
    borrow_apr: Decimal = ZERO,
    supply_apr: Decimal = ZERO,
) -> Decimal:
    """
    Expected holding cost over the horizon in USD (negative = income).

    Perp funding follows the usual sign: positive rate means longs pay
    shorts, so a short earns when funding is positive.
    """
    if signed_notional == 0:
        return ZERO
    t = KIND_TRAITS[kind]
    carry = t.long_carry if signed_notional > 0 else t.short_carry
    if carry is CarryType.FUNDING:
        return signed_notional * funding_rate_hourly * horizon_hours
    if carry is CarryType.BORROW:
        return abs(signed_notional) * borrow_apr / HUNDRED * horizon_hours / HOURS_PER_YEAR
    if carry is CarryType.SUPPLY:
        return -abs(signed_notional) * supply_apr / HUNDRED * horizon_hours / HOURS_PER_YEAR
    return ZERO


def quantize_qty(asset: Asset, quantity: Decimal) -> Decimal:
    """Round toward zero to the asset's precision."""
    return quantity.quantize(asset.quantum, rounding=ROUND_DOWN)
