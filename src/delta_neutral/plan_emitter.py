"""
Action Plan Emitter
===================
Turns a StrategyCandidate into an ordered, venue-tagged, idempotency-keyed
sequence of atomic Actions.

Ordering rules:
1. Capital-freeing actions (reductions, borrows) before capital-consuming ones
2. Hedge-opening actions before the exposure-increasing actions they offset
3. Partial-application safety: after ANY executed prefix, every underlying's
   |exposure| stays <= max(|pre-plan exposure|, epsilon, interim_exposure_usd)

Rule 3 is enforced by tranching: when no remaining action can be applied
whole without breaching the bound, the highest-priority action that can
move at all is split and only the safe part is released. Legs of a hedged
pair therefore alternate in steps of at most the bound. A plan that would
need more than ``max_plan_actions`` steps is infeasible.

The plan is lazy and restartable. Actions are generated on demand and
memoised, so ``resume_from(i)`` continues at index i without recomputing
anything already emitted.
"""

from __future__ import annotations

import hashlib
from dataclasses import replace
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Tuple

from src.delta_neutral.action_catalog import quantize_qty
from src.delta_neutral.config import EngineConfig
from src.delta_neutral.types import (
    Action,
    ActionKind,
    Asset,
    InfeasibleStrategyError,
    StrategyCandidate,
    ZERO,
)
from src.shared.system.logging import Logger


ROLE_PRIORITY = {"REDUCE": 0, "HEDGE": 1, "ENTRY": 2}


def plan_id_for(candidate: StrategyCandidate) -> str:
    """Deterministic digest of the candidate's actions and snapshot time."""
    h = hashlib.sha256()
    h.update(f"{candidate.snapshot_ts:.6f}".encode())
    for a in candidate.actions:
        h.update(
            f"|{a.venue}:{a.kind.value}:{a.asset}:{a.quantity}:{a.leverage}:{a.role}".encode()
        )
    return h.hexdigest()[:16]


def _priority(action: Action) -> tuple:
    frees = action.role == "REDUCE" or action.kind is ActionKind.BORROW
    return (0 if frees else 1, ROLE_PRIORITY[action.role], action.canonical_key)


class ActionPlan:
    """
    Lazy, memoised, restartable action sequence.

    Example:
        >>> plan = emit(candidate, config)
        >>> for action in plan:                 # runs until exhausted
        ...     executor.execute(action)
        >>> for action in plan.resume_from(3):  # no recomputation
        ...     executor.execute(action)
    """

    def __init__(
        self,
        plan_id: str,
        candidate: StrategyCandidate,
        config: EngineConfig,
        assets: Optional[Dict[str, Asset]] = None,
    ):
        self.plan_id = plan_id
        self.candidate = candidate
        self._config = config
        self._assets = assets or {}
        self._emitted: List[Action] = []
        self._source: Iterator[Action] = self._generate()
        self._exhausted = False

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def asset(self, symbol: str) -> Asset:
        """Reference data for ``symbol`` (precision defaults when unknown)."""
        return self._assets.get(symbol) or Asset(symbol)

    def _key(self, action: Action) -> Optional[str]:
        asset = self.asset(action.asset)
        if asset.stable or asset.synthetic:
            return None
        return asset.exposure_key

    def _generate(self) -> Iterator[Action]:
        floor = max(self._config.epsilon_usd, self._config.interim_exposure_usd)
        limit = self._config.max_plan_actions
        base = self.candidate.base_exposure
        exposure: Dict[str, Decimal] = {k: base.get(k) for k in base.keys()}
        bound: Dict[str, Decimal] = {k: max(abs(v), floor) for k, v in exposure.items()}

        remaining: List[Tuple[Action, Decimal]] = sorted(
            ((a, a.quantity) for a in self.candidate.actions), key=lambda item: _priority(item[0])
        )
        index = 0

        while remaining:
            if index >= limit:
                raise InfeasibleStrategyError(
                    f"plan needs more than {limit} actions within the exposure bound {floor}",
                    asset=remaining[0][0].asset,
                )

            chosen = None
            # Pass 1: whole actions that keep every bound
            for pos, (action, qty) in enumerate(remaining):
                key = self._key(action)
                if key is None:
                    chosen = (pos, qty)
                    break
                e = exposure.get(key, ZERO) + qty * action.reference_price
                if abs(e) <= bound.setdefault(key, floor):
                    chosen = (pos, qty)
                    break

            # Pass 2: largest safe tranche of the highest-priority movable action
            if chosen is None:
                for pos, (action, qty) in enumerate(remaining):
                    key = self._key(action)
                    tranche = self._safe_tranche(action, qty, exposure.get(key, ZERO), bound[key])
                    if tranche != 0:
                        chosen = (pos, tranche)
                        break

            if chosen is None:
                raise InfeasibleStrategyError(
                    "no remaining action can be released within the exposure bound",
                    asset=remaining[0][0].asset,
                )

            pos, qty = chosen
            action, left = remaining[pos]
            key = self._key(action)
            if key is not None:
                exposure[key] = exposure.get(key, ZERO) + qty * action.reference_price

            rest = left - qty
            if rest == 0:
                remaining.pop(pos)
            else:
                remaining[pos] = (action, rest)

            yield replace(action, quantity=qty, plan_id=self.plan_id, index=index)
            index += 1

    def _safe_tranche(self, action: Action, qty: Decimal, e: Decimal, bound: Decimal) -> Decimal:
        """Largest part of ``qty`` (same sign, asset precision) keeping |e'| <= bound."""
        price = action.reference_price
        if price <= 0:
            return ZERO
        room = (bound - e) if qty > 0 else (bound + e)
        if room <= 0:
            return ZERO
        tranche = quantize_qty(self.asset(action.asset), room / price)
        tranche = min(tranche, abs(qty))
        return tranche if qty > 0 else -tranche

    # -------------------------------------------------------------------------
    # Access
    # -------------------------------------------------------------------------

    def action_at(self, index: int) -> Action:
        """Action ``index``, generating up to it if needed."""
        if index < 0:
            raise IndexError(f"Invalid plan index {index}")
        while len(self._emitted) <= index and not self._exhausted:
            try:
                self._emitted.append(next(self._source))
            except StopIteration:
                self._exhausted = True
        if index >= len(self._emitted):
            raise IndexError(f"Plan {self.plan_id} has no action #{index}")
        return self._emitted[index]

    def resume_from(self, index: int) -> Iterator[Action]:
        """Iterate from ``index`` onward."""
        i = index
        while True:
            try:
                yield self.action_at(i)
            except IndexError:
                return
            i += 1

    def __iter__(self) -> Iterator[Action]:
        return self.resume_from(0)

    def materialize(self) -> Tuple[Action, ...]:
        """Generate everything (e.g. for attestation payloads)."""
        for _ in self.resume_from(len(self._emitted)):
            pass
        return tuple(self._emitted)

    @property
    def emitted_count(self) -> int:
        return len(self._emitted)

    def __repr__(self) -> str:
        state = "complete" if self._exhausted else "lazy"
        return f"ActionPlan({self.plan_id}, {len(self._emitted)} emitted, {state})"


def emit(
    candidate: StrategyCandidate,
    config: EngineConfig,
    assets: Optional[Dict[str, Asset]] = None,
) -> ActionPlan:
    """
    Build the ordered plan for ``candidate``.

    Args:
        candidate: Optimizer output for this cycle
        config: Engine configuration (epsilon and interim_exposure_usd bound
            the tranches, max_plan_actions caps the length)
        assets: Asset reference data (precision, underlying, stable flags)

    Generation is lazy, so the length cap surfaces as InfeasibleStrategyError
    from whichever access first runs past it. Call ``materialize()`` before
    executing anything to fail without partial execution.
    """
    plan = ActionPlan(plan_id_for(candidate), candidate, config, assets)
    Logger.info(f"[EMITTER] Plan {plan.plan_id} for {len(candidate.actions)} actions")
    return plan
