"""
Exposure Calculator
===================
Converts a Position Ledger + Market Snapshot into signed net USD exposure
per underlying asset.

Aggregation rules (via the action catalog):
- Spot / swapped holdings, staked and lent principal: long the underlying
- Perps and margin: signed by position side
- Borrowed assets: negative
- Synthetic (protocol-hedged) assets: reported under their own key and
  kept out of the neutrality check
- Stable assets: no directional exposure

A missing or stale price is a hard stop (StaleSnapshotError), never a
default. Incorrect exposure is worse than no answer.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, Optional

from src.delta_neutral.action_catalog import exposure_contribution
from src.delta_neutral.config import EngineConfig
from src.delta_neutral.market_snapshot import MarketSnapshot
from src.delta_neutral.types import DriftMode, ExposureVector, ZERO


HUNDRED = Decimal(100)


def compute(
    ledger,
    snapshot: MarketSnapshot,
    config: EngineConfig,
    now: Optional[float] = None,
    tracked: Iterable[str] = (),
) -> ExposureVector:
    """
    Net exposure of every position in ``ledger``.

    Args:
        ledger: PositionLedger or LedgerView
        snapshot: Market snapshot to price against
        config: Engine configuration (max snapshot age)
        now: Evaluation time (defaults to the snapshot timestamp)
        tracked: Extra exposure keys reported as exact zero when unheld

    Returns:
        ExposureVector; every key of an empty ledger is exactly zero

    Raises:
        StaleSnapshotError: A held asset has no price younger than
            config.max_snapshot_age_sec
    """
    view = ledger.view() if hasattr(ledger, "view") else ledger
    now = snapshot.taken_at if now is None else now

    net: Dict[str, Decimal] = {}
    gross: Dict[str, Decimal] = {}
    long: Dict[str, Decimal] = {}
    synthetic = set()

    for key in tracked:
        net.setdefault(key, ZERO)
        gross.setdefault(key, ZERO)
        long.setdefault(key, ZERO)

    for position in view.positions:
        asset = snapshot.asset(position.asset)
        if asset.stable:
            continue

        key = asset.exposure_key
        if asset.synthetic:
            synthetic.add(key)
        net.setdefault(key, ZERO)
        gross.setdefault(key, ZERO)
        long.setdefault(key, ZERO)

        if position.quantity == 0:
            continue

        price = snapshot.price(
            position.asset, now, config.max_snapshot_age_sec, venue=position.venue
        )
        value = exposure_contribution(asset, position.quantity, price)
        net[key] += value
        gross[key] += abs(value)
        if value > 0:
            long[key] += value

    return ExposureVector(net=net, gross=gross, long=long, synthetic=frozenset(synthetic))


# =============================================================================
# DRIFT
# =============================================================================


def _asset_drift(current: ExposureVector, baseline: ExposureVector, key: str) -> Decimal:
    moved = abs(current.get(key) - baseline.get(key))
    if moved == 0:
        return ZERO
    scale = max(current.gross_of(key), baseline.gross_of(key))
    if scale == 0:
        return HUNDRED
    return moved / scale * HUNDRED


def drift_between(
    current: ExposureVector,
    baseline: ExposureVector,
    mode: DriftMode = DriftMode.PER_ASSET,
) -> Decimal:
    """
    Drift of ``current`` from ``baseline`` as a percentage of gross exposure.

    PER_ASSET returns the worst single underlying; AGGREGATE divides the total
    absolute net movement by total gross. Synthetic keys are ignored.
    """
    keys = (set(current.net) | set(baseline.net)) - current.synthetic - baseline.synthetic
    if not keys:
        return ZERO

    if mode is DriftMode.PER_ASSET:
        return max(_asset_drift(current, baseline, k) for k in sorted(keys))

    moved = sum((abs(current.get(k) - baseline.get(k)) for k in keys), ZERO)
    if moved == 0:
        return ZERO
    scale = max(
        sum((current.gross_of(k) for k in keys), ZERO),
        sum((baseline.gross_of(k) for k in keys), ZERO),
    )
    if scale == 0:
        return HUNDRED
    return moved / scale * HUNDRED
