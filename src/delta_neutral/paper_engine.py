"""
Paper Mode Collaborators
========================
In-memory stand-ins for every external collaborator, for simulation and
tests.

This module provides:
1. PaperMarketSource - Static / jittered venue quotes with failure injection
2. PaperYieldSource - Fixed protocol APRs
3. PaperExecutor - Fills at reference price, optional failure indices
4. PaperAttestor / AutoApprover - Accept-all gates with reject lists
5. build_paper_engine() - A ready-to-run DeltaNeutralEngine (ETH basis book)

Usage:
    python -m src.delta_neutral.engine --cycles 3
"""

from __future__ import annotations

import asyncio
import hashlib
import random
import time
from dataclasses import replace
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set

from src.delta_neutral.collaborators import AttestationResult
from src.delta_neutral.config import EngineConfig
from src.delta_neutral.market_snapshot import SnapshotAssembler, VenueQuote
from src.delta_neutral.position_ledger import PositionLedger
from src.delta_neutral.types import (
    Action,
    ActionKind,
    Allocation,
    Asset,
    ExecutionReport,
    RiskParams,
    Venue,
    VenueCategory,
)
from src.delta_neutral.yields import CombinedYieldFetcher, YieldQuote
from src.shared.system.logging import Logger


# =============================================================================
# MARKET DATA
# =============================================================================


class PaperMarketSource:
    """
    Simulated venue feed.

    Prices are set with ``set_price``; ``jitter_pct`` adds uniform noise on
    every fetch. ``fail`` / ``delay_sec`` simulate an unreachable venue.
    """

    def __init__(
        self,
        venue: Venue,
        quotes: Iterable[VenueQuote] = (),
        jitter_pct: float = 0.0,
        clock=time.time,
    ):
        self.venue = venue
        self._quotes: Dict[str, VenueQuote] = {q.asset: q for q in quotes}
        self.jitter_pct = jitter_pct
        self._clock = clock
        self.fail = False
        self.delay_sec = 0.0
        self.freeze_timestamps = False

    def get_name(self) -> str:
        return self.venue.venue_id

    def set_price(self, asset: str, price: Decimal) -> None:
        self._quotes[asset] = replace(self._quotes[asset], price=price)

    async def fetch_venue(self) -> Venue:
        return self.venue

    async def fetch_quotes(self) -> List[VenueQuote]:
        if self.delay_sec:
            await asyncio.sleep(self.delay_sec)
        if self.fail:
            raise ConnectionError(f"{self.venue.venue_id} offline")

        now = self._clock()
        out = []
        for q in self._quotes.values():
            price = q.price
            if self.jitter_pct:
                noise = Decimal(str(round(random.uniform(-self.jitter_pct, self.jitter_pct), 6)))
                price = price * (1 + noise / 100)
            out.append(replace(q, price=price, timestamp=q.timestamp if self.freeze_timestamps else now))
        return out


class PaperYieldSource:
    """Fixed APR table for one protocol."""

    def __init__(self, name: str, quotes: Iterable[YieldQuote]):
        self._name = name
        self._quotes = list(quotes)

    def get_name(self) -> str:
        return self._name

    async def get_apr(self) -> List[YieldQuote]:
        return list(self._quotes)


# =============================================================================
# EXECUTION
# =============================================================================


class PaperExecutor:
    """
    Fills every action at its reference price.

    ``fail_keys`` / ``fail_indices`` make matching actions report failure
    once (the next attempt succeeds), which exercises plan resumption.
    """

    def __init__(self, fail_indices: Iterable[int] = (), fail_keys: Iterable[str] = ()):
        self.fail_indices: Set[int] = set(fail_indices)
        self.fail_keys: Set[str] = set(fail_keys)
        self.executed: List[Action] = []
        self.attempts = 0

    async def execute(self, action: Action) -> ExecutionReport:
        self.attempts += 1
        key = action.idempotency_key
        if action.index in self.fail_indices or key in self.fail_keys:
            self.fail_indices.discard(action.index)
            self.fail_keys.discard(key)
            Logger.debug(f"[PAPER] Injected failure on {key}")
            return ExecutionReport(key, success=False, error="injected failure")

        self.executed.append(action)
        return ExecutionReport(
            key,
            success=True,
            filled_quantity=abs(action.quantity),
            fill_price=action.reference_price,
        )

    async def execute_confidential(self, action: Action) -> ExecutionReport:
        return await self.execute(action)


class PaperAttestor:
    """Accepts every plan except ids listed in ``reject``."""

    def __init__(self, reject: Iterable[str] = (), reject_all: bool = False):
        self.reject = set(reject)
        self.reject_all = reject_all
        self.seen: List[str] = []

    async def attest(self, payload) -> AttestationResult:
        self.seen.append(payload.plan_id)
        if self.reject_all or payload.plan_id in self.reject:
            return AttestationResult(False, None, "paper attestor rejected plan")
        proof = hashlib.sha256(payload.model_dump_json().encode()).hexdigest()
        return AttestationResult(True, proof, "")


class AutoApprover:
    """Approves (or declines) every plan."""

    def __init__(self, approve: bool = True):
        self._approve = approve
        self.requests = 0

    async def approve(self, candidate, plan) -> bool:
        self.requests += 1
        return self._approve


# =============================================================================
# PAPER BOOK
# =============================================================================


PAPER_ASSETS = (
    Asset("ETH", "ethereum", decimals=6),
    Asset("stETH", "ethereum", decimals=6, underlying="ETH"),
    Asset("USDC", "ethereum", decimals=6, stable=True),
)


def build_paper_engine(
    capital: Decimal = Decimal("10000"),
    config: Optional[EngineConfig] = None,
    eth_price: Decimal = Decimal("2500"),
):
    """
    Two-venue ETH basis book: DEX swap (eisen) hedged by a CEX perp (binance).
    """
    from src.delta_neutral.engine import DeltaNeutralEngine

    config = config or EngineConfig(epsilon_usd=Decimal("250"))
    now = time.time()

    binance = Venue(
        "binance",
        VenueCategory.CEX,
        frozenset({ActionKind.PERP, ActionKind.SPOT}),
        {ActionKind.PERP: Decimal("4"), ActionKind.SPOT: Decimal("10")},
        max_leverage=Decimal("5"),
    )
    eisen = Venue(
        "eisen",
        VenueCategory.DEX,
        frozenset({ActionKind.SWAP}),
        {ActionKind.SWAP: Decimal("30")},
    )
    lido = Venue(
        "lido",
        VenueCategory.DEX,
        frozenset({ActionKind.STAKE}),
        {ActionKind.STAKE: Decimal("0")},
    )

    sources = [
        PaperMarketSource(binance, [
            VenueQuote("binance", "ETH", eth_price, now, funding_rate_hourly=Decimal("0.00001"),
                       liquidity_usd=Decimal("5000000")),
        ]),
        PaperMarketSource(eisen, [
            VenueQuote("eisen", "ETH", eth_price, now, liquidity_usd=Decimal("2000000")),
        ]),
        PaperMarketSource(lido, [
            VenueQuote("lido", "stETH", eth_price, now, liquidity_usd=Decimal("1000000")),
        ]),
    ]
    yields = CombinedYieldFetcher([
        PaperYieldSource("lido", [YieldQuote("lido", "stETH", Decimal("3.2"))]),
    ])

    risk = RiskParams(
        max_leverage=Decimal("5"),
        allocations=(Allocation("ETH", capital),),
    )
    executor = PaperExecutor()
    return DeltaNeutralEngine(
        assembler=SnapshotAssembler(sources, PAPER_ASSETS, yields),
        ledger=PositionLedger(),
        risk=risk,
        capital=capital,
        executor=executor,
        config=config,
        attestor=PaperAttestor(),
        approver=AutoApprover(),
        secure_executor=executor,
    )
