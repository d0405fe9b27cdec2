"""
Delta Neutral Type Definitions
==============================
PEP 484 compliant dataclasses for the delta-neutral portfolio engine.

These types form the "language" the engine speaks:
- Asset / Venue: Reference data refreshed with every MarketSnapshot
- Position: One signed holding, owned by the PositionLedger
- ExposureVector: Net USD exposure per underlying (Goal: 0)
- Action: One atomic, idempotency-keyed venue instruction
- StrategyCandidate: Output of the optimizer, lives for one cycle
- RebalanceState: Memory of the RebalanceTrigger

All money and quantities are Decimal. Floats only appear for wall-clock
timestamps (seconds since epoch).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Iterable, Literal, Mapping, Optional


ZERO = Decimal(0)


# =============================================================================
# ENUMS
# =============================================================================


class VenueCategory(Enum):
    """Where a venue settles."""

    CEX = "CEX"
    DEX = "DEX"


class ActionKind(str, Enum):
    """Closed set of venue action kinds. See action_catalog.KIND_TRAITS."""

    SPOT = "spot"
    MARGIN = "margin"
    PERP = "perp"
    LEND = "lend"
    BORROW = "borrow"
    STAKE = "stake"
    SWAP = "swap"


class TriggerState(Enum):
    """States of the RebalanceTrigger."""

    IDLE = "IDLE"
    EVALUATING = "EVALUATING"
    TRIGGERED = "TRIGGERED"


class DriftMode(Enum):
    """How drift is measured against the baseline exposure."""

    PER_ASSET = "per_asset"    # Worst single underlying
    AGGREGATE = "aggregate"    # Sum over all underlyings


ActionRole = Literal["REDUCE", "HEDGE", "ENTRY"]


# =============================================================================
# REFERENCE DATA
# =============================================================================


@dataclass(frozen=True, slots=True)
class Asset:
    """
    Immutable asset reference data.

    Synthetic-asset convention:
        An asset whose protocol already nets its own exposure (for example a
        delta-neutral vault share) is flagged ``synthetic``. Its exposure is
        reported under its own symbol, is never hedged and is left out of the
        neutrality check. Staked or lent derivatives that are NOT hedged by
        their protocol set ``underlying`` instead, so their principal counts
        as long exposure to that underlying.

    Attributes:
        symbol: Ticker on the venue (e.g. "ETH", "stETH")
        scope: Chain or venue the symbol lives on (e.g. "ethereum", "binance")
        decimals: Quantity precision
        underlying: Symbol this asset's exposure rolls up to (None = itself)
        synthetic: Exposure is netted by the issuing protocol
        stable: Cash-like quote asset with no directional exposure
    """

    symbol: str
    scope: str = ""
    decimals: int = 8
    underlying: Optional[str] = None
    synthetic: bool = False
    stable: bool = False

    @property
    def exposure_key(self) -> str:
        """Key this asset contributes to in an ExposureVector."""
        if self.synthetic:
            return self.symbol
        return self.underlying or self.symbol

    @property
    def quantum(self) -> Decimal:
        """Smallest representable quantity step."""
        return Decimal(1).scaleb(-self.decimals)


@dataclass(frozen=True)
class Venue:
    """
    Venue reference data, refreshed by each MarketSnapshot.

    Attributes:
        venue_id: Unique identifier (e.g. "binance", "eisen")
        category: CEX or DEX
        kinds: Supported action kinds
        fee_bps: Fee in basis points per action kind
        max_leverage: Highest leverage the venue offers (1 = none)
    """

    venue_id: str
    category: VenueCategory
    kinds: frozenset = frozenset()
    fee_bps: Mapping[ActionKind, Decimal] = field(default_factory=dict)
    max_leverage: Decimal = Decimal(1)

    def supports(self, kind: ActionKind) -> bool:
        return kind in self.kinds

    def fee_rate(self, kind: ActionKind) -> Decimal:
        """Fee as a fraction of notional."""
        return Decimal(self.fee_bps.get(kind, ZERO)) / Decimal(10_000)


# =============================================================================
# HOLDINGS & ACTIONS
# =============================================================================


@dataclass(frozen=True, slots=True)
class Position:
    """
    One signed holding on one venue.

    Positive quantity = long / supplied, negative = short / borrowed.
    Owned by the PositionLedger; everyone else sees it through a LedgerView.
    """

    venue: str
    asset: str
    kind: ActionKind
    quantity: Decimal
    entry_price: Decimal = ZERO
    leverage: Decimal = Decimal(1)

    def __post_init__(self):
        if self.leverage < 1:
            raise ValueError(f"Invalid leverage {self.leverage}: must be >= 1")

    @property
    def key(self) -> tuple:
        return (self.venue, self.asset, self.kind)

    @property
    def is_open(self) -> bool:
        return self.quantity != 0

    def __repr__(self) -> str:
        side = "LONG" if self.quantity > 0 else "SHORT" if self.quantity < 0 else "FLAT"
        return (
            f"Position({self.venue}:{self.kind.value} {side} "
            f"{self.quantity} {self.asset} @ {self.entry_price}, {self.leverage}x)"
        )


@dataclass(frozen=True, slots=True)
class Action:
    """
    One atomic instruction for a single venue.

    Immutable once emitted. ``plan_id`` and ``index`` are stamped by the
    plan emitter and together form the idempotency key the execution
    collaborator uses to consume each action exactly once.

    Attributes:
        venue: Venue identifier
        kind: Action kind (closed set)
        asset: Base asset symbol
        quantity: Signed base quantity (+ buy/supply, - sell/short/borrow)
        quote_asset: Counter asset for swaps and spot trades
        limit_price: Worst acceptable price (None = market)
        leverage: Leverage applied to the position (1 for unlevered kinds)
        reference_price: Snapshot price used to size the action
        role: REDUCE (frees capital), HEDGE (offsets) or ENTRY (adds exposure)
        confidential: Requires the secure-execution collaborator
    """

    venue: str
    kind: ActionKind
    asset: str
    quantity: Decimal
    quote_asset: Optional[str] = None
    limit_price: Optional[Decimal] = None
    leverage: Decimal = Decimal(1)
    reference_price: Decimal = ZERO
    role: ActionRole = "ENTRY"
    confidential: bool = False
    plan_id: Optional[str] = None
    index: Optional[int] = None

    @property
    def idempotency_key(self) -> str:
        if self.plan_id is None or self.index is None:
            raise ValueError("Action has not been emitted (no plan id / index)")
        return f"{self.plan_id}:{self.index}"

    @property
    def side(self) -> str:
        return "BUY" if self.quantity > 0 else "SELL"

    @property
    def notional_usd(self) -> Decimal:
        return abs(self.quantity) * self.reference_price

    @property
    def canonical_key(self) -> tuple:
        """Stable ordering key (no plan metadata)."""
        return (self.venue, self.kind.value, self.asset, self.role, str(self.quantity))

    def __repr__(self) -> str:
        key = f" #{self.index}" if self.index is not None else ""
        return (
            f"Action{key}({self.role} {self.venue}:{self.kind.value} "
            f"{self.side} {abs(self.quantity)} {self.asset}, {self.leverage}x)"
        )


@dataclass(frozen=True, slots=True)
class ExecutionReport:
    """Per-action result reported back by an execution collaborator."""

    idempotency_key: str
    success: bool
    filled_quantity: Decimal = ZERO   # Unsigned, direction comes from the Action
    fill_price: Decimal = ZERO
    error: Optional[str] = None


# =============================================================================
# EXPOSURE
# =============================================================================


def _freeze(values: Optional[Mapping[str, Decimal]]) -> Mapping[str, Decimal]:
    return MappingProxyType(dict(sorted((values or {}).items())))


@dataclass(frozen=True)
class ExposureVector:
    """
    Signed net USD exposure per underlying.

    ``gross`` and ``long`` carry the absolute and long-only USD per key and
    are used to normalise drift and size allocations. Keys listed in
    ``synthetic`` are reported but never count against neutrality.
    """

    net: Mapping[str, Decimal] = field(default_factory=dict)
    gross: Mapping[str, Decimal] = field(default_factory=dict)
    long: Mapping[str, Decimal] = field(default_factory=dict)
    synthetic: frozenset = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "net", _freeze(self.net))
        object.__setattr__(self, "gross", _freeze(self.gross))
        object.__setattr__(self, "long", _freeze(self.long))
        object.__setattr__(self, "synthetic", frozenset(self.synthetic))

    @classmethod
    def zero(cls, keys: Iterable[str] = ()) -> "ExposureVector":
        """Exact-zero vector (the usual optimizer target)."""
        keys = list(keys)
        return cls(
            net={k: ZERO for k in keys},
            gross={k: ZERO for k in keys},
            long={k: ZERO for k in keys},
        )

    def get(self, key: str) -> Decimal:
        return self.net.get(key, ZERO)

    def gross_of(self, key: str) -> Decimal:
        return self.gross.get(key, ZERO)

    def long_of(self, key: str) -> Decimal:
        return self.long.get(key, ZERO)

    def keys(self) -> list:
        return list(self.net.keys())

    def directional(self) -> dict:
        """Entries that count against neutrality (synthetic keys removed)."""
        return {k: v for k, v in self.net.items() if k not in self.synthetic}

    def max_abs(self) -> Decimal:
        values = [abs(v) for v in self.directional().values()]
        return max(values) if values else ZERO

    def is_neutral(self, epsilon: Decimal) -> bool:
        return self.max_abs() <= epsilon

    def deviation_from(self, target: "ExposureVector") -> dict:
        """Signed distance to target for every directional key of either vector."""
        keys = (set(self.net) | set(target.net)) - self.synthetic - target.synthetic
        return {k: self.get(k) - target.get(k) for k in sorted(keys)}

    def within(self, target: "ExposureVector", epsilon: Decimal) -> bool:
        return all(abs(d) <= epsilon for d in self.deviation_from(target).values())

    def total_gross(self) -> Decimal:
        return sum(self.gross.values(), ZERO)

    def to_dict(self) -> dict:
        return {k: str(v) for k, v in self.net.items()}

    def __repr__(self) -> str:
        body = ", ".join(f"{k}={v:.2f}" for k, v in self.net.items())
        return f"ExposureVector({body or 'empty'})"


# =============================================================================
# OPTIMIZER I/O
# =============================================================================


@dataclass(frozen=True, slots=True)
class Allocation:
    """User request: hold ``notional_usd`` of ``asset`` via one of ``kinds``."""

    asset: str
    notional_usd: Decimal
    kinds: tuple = (ActionKind.SWAP, ActionKind.SPOT, ActionKind.STAKE, ActionKind.LEND)


@dataclass(frozen=True)
class RiskParams:
    """
    User-facing risk tolerance.

    Attributes:
        max_leverage: Per-venue leverage cap requested by the user
        allocations: Directional holdings to build and then hedge
        venue_capital: Optional margin cap per venue (USD)
        holding_horizon_hours: Overrides the configured carry horizon
    """

    max_leverage: Decimal = Decimal(1)
    allocations: tuple = ()
    venue_capital: Mapping[str, Decimal] = field(default_factory=dict)
    holding_horizon_hours: Optional[Decimal] = None


@dataclass(frozen=True, slots=True)
class CostBreakdown:
    """Projected cost of a candidate in USD. Negative carry is yield."""

    fees: Decimal = ZERO
    slippage: Decimal = ZERO
    carry: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.fees + self.slippage + self.carry

    def __add__(self, other: "CostBreakdown") -> "CostBreakdown":
        return CostBreakdown(
            fees=self.fees + other.fees,
            slippage=self.slippage + other.slippage,
            carry=self.carry + other.carry,
        )


@dataclass(frozen=True)
class StrategyCandidate:
    """
    Proposed actions plus what they are expected to achieve.

    Produced and discarded within one evaluation cycle.
    """

    actions: tuple
    projected_exposure: ExposureVector
    base_exposure: ExposureVector
    cost: CostBreakdown
    gross_notional: Decimal
    margin_required: Decimal
    min_liquidity_usd: Decimal
    snapshot_ts: float

    @property
    def distinct_actions(self) -> int:
        return len({(a.venue, a.kind, a.asset) for a in self.actions})

    @property
    def is_empty(self) -> bool:
        return not self.actions

    def __repr__(self) -> str:
        return (
            f"StrategyCandidate({len(self.actions)} actions, "
            f"cost=${self.cost.total:.2f}, gross=${self.gross_notional:.2f}, "
            f"max|E|=${self.projected_exposure.max_abs():.2f})"
        )


# =============================================================================
# TRIGGER MEMORY
# =============================================================================


@dataclass
class RebalanceState:
    """
    Mutable memory of the RebalanceTrigger (the only writer).

    Attributes:
        last_exposure: Exposure seen by the most recent observe()
        baseline_exposure: Exposure recorded at the last rebalance
        last_rebalance_ts: When the last plan was emitted
        cumulative_drift_pct: Sum of per-observation drift since last rebalance
        last_drift_pct: Drift against baseline at the last observation
        state: Current trigger state
        last_error: Failure that left the trigger TRIGGERED
        last_reason: Why the last transition happened
    """

    last_exposure: Optional[ExposureVector] = None
    baseline_exposure: Optional[ExposureVector] = None
    last_rebalance_ts: Optional[float] = None
    cumulative_drift_pct: Decimal = ZERO
    last_drift_pct: Decimal = ZERO
    state: TriggerState = TriggerState.IDLE
    last_error: Optional[BaseException] = None
    last_reason: str = ""


# =============================================================================
# ERRORS
# =============================================================================


@dataclass(eq=False)
class DeltaNeutralError(Exception):
    """
    Base of the engine's error taxonomy.

    Every error carries enough context (cycle timestamp, offending venue or
    asset) for the caller to decide between retry and abort.
    """

    message: str
    cycle_ts: Optional[float] = None
    venue: Optional[str] = None
    asset: Optional[str] = None

    def _context(self) -> str:
        parts = []
        if self.venue:
            parts.append(f"venue={self.venue}")
        if self.asset:
            parts.append(f"asset={self.asset}")
        if self.cycle_ts is not None:
            parts.append(f"cycle={self.cycle_ts:.3f}")
        return f" [{', '.join(parts)}]" if parts else ""

    def __str__(self) -> str:
        return f"{self.message}{self._context()}"


@dataclass(eq=False)
class StaleSnapshotError(DeltaNeutralError):
    """
    Market data too old or missing. Halt the cycle and retry next tick.

    Incorrect exposure is worse than no answer, so a missing price is never
    defaulted.
    """

    age_sec: Optional[float] = None

    def __str__(self) -> str:
        age = f" (age {self.age_sec:.1f}s)" if self.age_sec is not None else ""
        return f"STALE SNAPSHOT: {self.message}{age}{self._context()}"


@dataclass(eq=False)
class InfeasibleStrategyError(DeltaNeutralError):
    """No combination satisfies capital/leverage constraints within epsilon."""

    evaluated: int = 0

    def __str__(self) -> str:
        return (
            f"INFEASIBLE: {self.message} "
            f"({self.evaluated} combinations evaluated){self._context()}"
        )


@dataclass(eq=False)
class OptimizerTimeoutError(DeltaNeutralError):
    """Search budget exceeded. Retry next cycle with fresh data."""

    budget_sec: float = 0.0
    evaluated: int = 0

    def __str__(self) -> str:
        return (
            f"OPTIMIZER TIMEOUT: {self.message} after {self.budget_sec:.2f}s "
            f"({self.evaluated} combinations evaluated){self._context()}"
        )


@dataclass(eq=False)
class ExecutionPartialFailure(DeltaNeutralError):
    """
    An action in a plan failed after ``completed`` earlier ones succeeded.

    Resume the same plan from ``failed_index`` or re-optimize from the
    now-actual ledger. When ``resumable`` is False (a confirmed but short
    fill) the remaining actions were sized for fills that never happened,
    so only re-optimizing is safe.
    """

    plan_id: str = ""
    failed_index: int = 0
    completed: int = 0
    resumable: bool = True

    @property
    def resume_index(self) -> int:
        return self.failed_index

    def __str__(self) -> str:
        return (
            f"PARTIAL EXECUTION: plan {self.plan_id} failed at action "
            f"#{self.failed_index} ({self.completed} confirmed): "
            f"{self.message}{self._context()}"
        )


@dataclass(eq=False)
class AttestationRejected(InfeasibleStrategyError):
    """Plan failed validation. Never resubmit the same plan id."""

    plan_id: str = ""
    proof: Optional[str] = None

    def __str__(self) -> str:
        return f"ATTESTATION REJECTED: plan {self.plan_id}: {self.message}{self._context()}"
