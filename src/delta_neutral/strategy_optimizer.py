"""
Strategy Optimizer
==================
Constrained search for the cheapest set of venue actions that brings the
portfolio within epsilon of the target exposure.

The search space is finite and enumerated in a canonical order:

1. ENTRY legs: for each allocation still short of its notional, one
   (venue, asset, kind) among venues with a fresh quote that can hold the
   position long.
2. HEDGE legs: for each underlying whose projected exposure is still more
   than epsilon from target, assign the residual to one hedge option, or
   split it across up to ``max_hedge_split`` options when a single venue's
   depth cannot absorb it (residual demand → venue capacity assignment).

Every full combination is checked against the hard constraints:
- |projected - target| <= epsilon for every directional underlying
- gross notional <= capital × max leverage
- unlevered buys (spot, swap, stake, lend) <= capital
- per-venue leverage <= min(user, engine, venue) limits
- optional per-venue margin cap

and scored by projected cost (fees + slippage + carry over the horizon).
Near-equal costs are broken by fewer distinct actions, then deeper
liquidity, then lower cost, then canonical action order, so an unchanged
input always yields the same candidate.

Constraints are never relaxed: no feasible combination raises
InfeasibleStrategyError. The search checks its SearchBudget between
combinations and aborts with OptimizerTimeoutError when it runs out.
"""

from __future__ import annotations

import asyncio
import itertools
import threading
import time
from collections import Counter
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Dict, List, Optional, Tuple

from src.delta_neutral.action_catalog import (
    can_take,
    carry_cost,
    effective_leverage,
    fee_cost,
    quantize_qty,
    settles_as,
    slippage_cost,
    traits,
)
from src.delta_neutral.config import EngineConfig
from src.delta_neutral.exposure_calculator import compute
from src.delta_neutral.market_snapshot import MarketSnapshot
from src.delta_neutral.position_ledger import LedgerView
from src.delta_neutral.types import (
    Action,
    ActionKind,
    Allocation,
    Asset,
    CostBreakdown,
    ExposureVector,
    InfeasibleStrategyError,
    OptimizerTimeoutError,
    RiskParams,
    StaleSnapshotError,
    StrategyCandidate,
    Venue,
    VenueCategory,
    ZERO,
)
from src.shared.system.logging import Logger


# Kinds that may carry a hedge leg. Lend / stake are yield entries only.
HEDGE_KINDS = (
    ActionKind.PERP,
    ActionKind.MARGIN,
    ActionKind.BORROW,
    ActionKind.SPOT,
    ActionKind.SWAP,
)

QUOTE_ASSET = "USDC"


# =============================================================================
# SEARCH BUDGET
# =============================================================================


class SearchBudget:
    """
    Cooperative deadline + cancel flag for one search.

    The optimizer calls ``tick()`` between combinations; once the deadline
    passes or ``cancel()`` is called, the next tick raises
    OptimizerTimeoutError.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self._clock = clock
        self._deadline = clock() + seconds
        self._cancelled = threading.Event()
        self.evaluated = 0

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def check(self) -> None:
        if self._cancelled.is_set():
            raise OptimizerTimeoutError(
                "search cancelled", budget_sec=self.seconds, evaluated=self.evaluated
            )
        if self._clock() > self._deadline:
            raise OptimizerTimeoutError(
                "search budget exceeded", budget_sec=self.seconds, evaluated=self.evaluated
            )

    def tick(self) -> None:
        self.evaluated += 1
        self.check()


# =============================================================================
# SEARCH STATE
# =============================================================================


@dataclass(frozen=True, slots=True)
class LegOption:
    """One place a leg could go."""

    venue: Venue
    asset: Asset
    kind: ActionKind
    price: Decimal
    liquidity_usd: Decimal
    leverage: Decimal

    @property
    def sort_key(self) -> tuple:
        return (self.venue.venue_id, self.asset.symbol, self.kind.value)


@dataclass(frozen=True, slots=True)
class _Scored:
    cost: Decimal
    distinct: int
    min_liquidity: Decimal
    canonical: tuple
    candidate: StrategyCandidate

    def rank(self) -> tuple:
        return (self.distinct, -self.min_liquidity, self.cost, self.canonical)


class _Search:
    """Per-call search context (never reused across cycles)."""

    def __init__(
        self,
        target: ExposureVector,
        capital: Decimal,
        risk: RiskParams,
        snapshot: MarketSnapshot,
        config: EngineConfig,
        view: LedgerView,
        now: float,
        budget: SearchBudget,
    ):
        self.target = target
        self.capital = capital
        self.risk = risk
        self.snapshot = snapshot
        self.config = config
        self.view = view
        self.now = now
        self.budget = budget
        self.eps = config.epsilon_usd
        self.lev_cap = min(risk.max_leverage, config.max_leverage)
        self.horizon = risk.holding_horizon_hours or config.holding_horizon_hours
        self.tracked = tuple(a.asset for a in risk.allocations)
        self.violations: Counter = Counter()
        self._hedge_cache: Dict[tuple, List[Tuple[Action, ...]]] = {}

    # -------------------------------------------------------------------------
    # Options
    # -------------------------------------------------------------------------

    def _options(self, key: str, kinds, direction: int) -> Tuple[List[LegOption], bool]:
        """
        Fresh (venue, asset, kind) options for exposure key ``key``.

        Returns:
            (options, saw_stale) where saw_stale means a quote existed but
            was too old to use
        """
        options: List[LegOption] = []
        saw_stale = False
        for venue_id in sorted(self.snapshot.venues):
            venue = self.snapshot.venues[venue_id]
            for (q_venue, symbol), quote in sorted(self.snapshot.quotes.items()):
                if q_venue != venue_id:
                    continue
                asset = self.snapshot.asset(symbol)
                if asset.stable or asset.exposure_key != key:
                    continue
                if not quote.is_fresh(self.now, self.config.max_snapshot_age_sec):
                    saw_stale = True
                    continue
                if quote.liquidity_usd <= 0:
                    continue
                for kind in sorted(kinds, key=lambda k: k.value):
                    if not venue.supports(kind) or not can_take(kind, direction):
                        continue
                    options.append(
                        LegOption(
                            venue=venue,
                            asset=asset,
                            kind=kind,
                            price=quote.price,
                            liquidity_usd=quote.liquidity_usd,
                            leverage=effective_leverage(kind, venue, self.lev_cap),
                        )
                    )
        return options, saw_stale

    def _leg(self, option: LegOption, usd: Decimal, role: str) -> Optional[Action]:
        qty = quantize_qty(option.asset, usd / option.price)
        if qty == 0:
            return None

        existing = self.view.get(option.venue.venue_id, option.asset.symbol, settles_as(option.kind))
        if existing is not None and (existing.quantity > 0) != (qty > 0) and abs(qty) <= abs(existing.quantity):
            role = "REDUCE"

        quote_asset = QUOTE_ASSET if option.kind in (ActionKind.SWAP, ActionKind.SPOT, ActionKind.MARGIN) else None
        return Action(
            venue=option.venue.venue_id,
            kind=option.kind,
            asset=option.asset.symbol,
            quantity=qty,
            quote_asset=quote_asset,
            leverage=option.leverage,
            reference_price=option.price,
            role=role,
            confidential=option.venue.category is VenueCategory.CEX,
        )

    def entry_choices(self, allocation: Allocation, base: ExposureVector) -> List[Tuple[Action, ...]]:
        deficit = allocation.notional_usd - base.long_of(allocation.asset)
        if deficit <= self.eps:
            return [()]

        options, saw_stale = self._options(allocation.asset, allocation.kinds, +1)
        choices = [(leg,) for leg in (self._leg(o, deficit, "ENTRY") for o in options) if leg]
        if choices:
            return choices
        if saw_stale:
            raise StaleSnapshotError(
                f"no fresh quote to build the {allocation.asset} allocation",
                asset=allocation.asset,
            )
        raise InfeasibleStrategyError(
            f"no venue can hold a long {allocation.asset} position", asset=allocation.asset
        )

    def hedge_choices(self, key: str, needed_usd: Decimal) -> List[Tuple[Action, ...]]:
        """
        Every assignment of ``needed_usd`` (signed) to up to
        ``max_hedge_split`` options, each filled to its depth except the last.
        """
        cache_key = (key, needed_usd)
        if cache_key in self._hedge_cache:
            return self._hedge_cache[cache_key]

        direction = 1 if needed_usd > 0 else -1
        options, _ = self._options(key, HEDGE_KINDS, direction)
        options.sort(key=lambda o: o.sort_key)
        remaining_total = abs(needed_usd)
        sign = Decimal(direction)
        results: List[Tuple[Action, ...]] = []

        def assign(remaining: Decimal, used: Tuple[LegOption, ...], legs: Tuple[Action, ...]):
            for option in options:
                if option in used:
                    continue
                self.budget.check()
                if remaining <= option.liquidity_usd:
                    leg = self._leg(option, sign * remaining, "HEDGE")
                    if leg is not None:
                        results.append(legs + (leg,))
                elif len(used) + 1 < self.config.max_hedge_split:
                    leg = self._leg(option, sign * option.liquidity_usd, "HEDGE")
                    if leg is not None:
                        assign(remaining - option.liquidity_usd, used + (option,), legs + (leg,))

        assign(remaining_total, (), ())
        self._hedge_cache[cache_key] = results
        return results

    # -------------------------------------------------------------------------
    # Scoring
    # -------------------------------------------------------------------------

    def _book(self, view: LedgerView) -> tuple:
        """(gross notional, total margin, {venue: (notional, margin)})"""
        gross = margin = ZERO
        per_venue: Dict[str, list] = {}
        for p in view.positions:
            asset = self.snapshot.asset(p.asset)
            if asset.stable or p.quantity == 0:
                continue
            price = self.snapshot.price(p.asset, self.now, self.config.max_snapshot_age_sec, venue=p.venue)
            notional = abs(p.quantity * price)
            locked = notional / p.leverage
            gross += notional
            margin += locked
            bucket = per_venue.setdefault(p.venue, [ZERO, ZERO])
            bucket[0] += notional
            bucket[1] += locked
        return gross, margin, per_venue

    def _cost(self, actions: Tuple[Action, ...]) -> CostBreakdown:
        total = CostBreakdown()
        for a in actions:
            venue = self.snapshot.venues[a.venue]
            signed = a.quantity * a.reference_price
            funding, borrow, supply = self.snapshot.rates(a.venue, a.asset)
            total = total + CostBreakdown(
                fees=fee_cost(venue, a.kind, signed),
                slippage=slippage_cost(
                    signed,
                    self.snapshot.liquidity(a.venue, a.asset),
                    self.config.slippage_coefficient,
                ),
                carry=carry_cost(a.kind, signed, self.horizon, funding, borrow, supply),
            )
        return total

    def evaluate(self, actions: Tuple[Action, ...], base: ExposureVector) -> Optional[_Scored]:
        simulated = self.view.with_actions(actions)
        projected = compute(simulated, self.snapshot, self.config, self.now, self.tracked)

        if not projected.within(self.target, self.eps):
            self.violations["exposure outside epsilon"] += 1
            return None

        gross, margin, per_venue = self._book(simulated)
        if gross > self.capital * self.lev_cap:
            self.violations["gross notional exceeds capital x leverage"] += 1
            return None

        # Unlevered buys are paid in full from capital
        cash = sum(
            (a.notional_usd for a in actions
             if a.role != "REDUCE" and a.quantity > 0 and not traits(a.kind).leveraged),
            ZERO,
        )
        if cash > self.capital:
            self.violations["unlevered legs exceed capital"] += 1
            return None

        for venue_id, (notional, locked) in sorted(per_venue.items()):
            venue = self.snapshot.venue(venue_id)
            limit = min(self.lev_cap, venue.max_leverage) if venue else self.lev_cap
            if locked > 0 and notional / locked > max(limit, Decimal(1)):
                self.violations[f"leverage on {venue_id}"] += 1
                return None
            cap = self.risk.venue_capital.get(venue_id)
            if cap is not None and locked > cap:
                self.violations[f"capital on {venue_id}"] += 1
                return None

        cost = self._cost(actions)
        liquidity = [self.snapshot.liquidity(a.venue, a.asset) for a in actions]
        min_liquidity = min(liquidity) if liquidity else ZERO
        ordered = tuple(sorted(actions, key=lambda a: a.canonical_key))

        candidate = StrategyCandidate(
            actions=ordered,
            projected_exposure=projected,
            base_exposure=base,
            cost=cost,
            gross_notional=gross,
            margin_required=margin,
            min_liquidity_usd=min_liquidity,
            snapshot_ts=self.snapshot.taken_at,
        )
        return _Scored(
            cost=cost.total,
            distinct=candidate.distinct_actions,
            min_liquidity=min_liquidity,
            canonical=tuple(a.canonical_key for a in ordered),
            candidate=candidate,
        )


# =============================================================================
# PUBLIC API
# =============================================================================


def select_best(scored: List[_Scored], tolerance: Decimal) -> _Scored:
    """Cheapest, with near-equal costs broken by action count then liquidity."""
    best_cost = min(s.cost for s in scored)
    pool = [s for s in scored if s.cost - best_cost <= tolerance]
    return min(pool, key=lambda s: s.rank())


def optimize(
    target: ExposureVector,
    capital: Decimal,
    risk: RiskParams,
    snapshot: MarketSnapshot,
    config: EngineConfig,
    current: Optional[LedgerView] = None,
    now: Optional[float] = None,
    budget: Optional[SearchBudget] = None,
) -> StrategyCandidate:
    """
    Search for the minimum-cost candidate within epsilon of ``target``.

    Args:
        target: Desired exposure (usually ExposureVector.zero())
        capital: Capital available (USD)
        risk: User risk parameters and allocations
        snapshot: Market snapshot to price against
        config: Engine configuration
        current: Current LedgerView (None = empty book)
        now: Evaluation time (defaults to the snapshot timestamp)
        budget: Search budget (defaults to config.optimizer_budget_sec)

    Raises:
        StaleSnapshotError: Held or required prices are stale
        InfeasibleStrategyError: No combination satisfies every constraint
        OptimizerTimeoutError: Budget exhausted or cancelled
    """
    if capital <= 0:
        raise InfeasibleStrategyError(f"capital must be positive, got {capital}")

    now = snapshot.taken_at if now is None else now
    budget = budget or SearchBudget(config.optimizer_budget_sec)
    view = current if current is not None else LedgerView(0)
    search = _Search(target, capital, risk, snapshot, config, view, now, budget)

    base = compute(view, snapshot, config, now, search.tracked)
    entry_sets = [search.entry_choices(a, base) for a in risk.allocations]

    scored: List[_Scored] = []
    for entries in itertools.product(*entry_sets):
        budget.tick()
        entry_actions = tuple(leg for choice in entries for leg in choice)
        projected = compute(view.with_actions(entry_actions), snapshot, config, now, search.tracked)

        residual = {
            k: d for k, d in projected.deviation_from(target).items() if abs(d) > search.eps
        }
        hedge_sets = []
        for key in sorted(residual):
            choices = search.hedge_choices(key, -residual[key])
            if not choices:
                search.violations[f"no hedge venue for {key}"] += 1
                break
            hedge_sets.append(choices)
        else:
            for hedges in itertools.product(*hedge_sets):
                budget.tick()
                actions = entry_actions + tuple(leg for choice in hedges for leg in choice)
                result = search.evaluate(actions, base)
                if result is not None:
                    scored.append(result)

    if not scored:
        summary = ", ".join(f"{reason} ({n})" for reason, n in search.violations.most_common(3))
        raise InfeasibleStrategyError(
            f"no combination within epsilon {search.eps} satisfies constraints: "
            f"{summary or 'nothing to evaluate'}",
            evaluated=budget.evaluated,
        )

    best = select_best(scored, config.cost_tie_tolerance_usd)
    Logger.info(
        f"[OPTIMIZER] {len(scored)}/{budget.evaluated} feasible, chose {best.candidate}"
    )
    return best.candidate


async def optimize_async(
    target: ExposureVector,
    capital: Decimal,
    risk: RiskParams,
    snapshot: MarketSnapshot,
    config: EngineConfig,
    current: Optional[LedgerView] = None,
    now: Optional[float] = None,
    budget: Optional[SearchBudget] = None,
) -> StrategyCandidate:
    """
    Run ``optimize`` off the event loop under the same budget.

    The worker thread is cancelled through the budget flag if the wall-clock
    wait runs out first.
    """
    budget = budget or SearchBudget(config.optimizer_budget_sec)
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(
                optimize, target, capital, risk, snapshot, config, current, now, budget
            ),
            timeout=budget.seconds + 1.0,
        )
    except asyncio.TimeoutError:
        budget.cancel()
        raise OptimizerTimeoutError(
            "search did not yield in time", budget_sec=budget.seconds, evaluated=budget.evaluated
        )
