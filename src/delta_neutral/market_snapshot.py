"""
Market Snapshot
===============
Normalized, timestamped read of prices, funding / borrow rates and
liquidity depth per venue and asset.

The SnapshotAssembler fans out to every market data source concurrently.
Each source either answers within its timeout or is recorded as
unreachable. A partial snapshot is a valid degraded input only when no
unreachable venue holds an open position.
"""

from __future__ import annotations

import asyncio
import statistics
import time
from dataclasses import dataclass, field
from decimal import Decimal
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, runtime_checkable

from src.delta_neutral.config import EngineConfig
from src.delta_neutral.types import Asset, StaleSnapshotError, Venue, ZERO
from src.delta_neutral.yields import CombinedYieldFetcher, YieldQuote
from src.shared.system.logging import Logger


# ═══════════════════════════════════════════════════════════════════════════════
# QUOTES
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class VenueQuote:
    """
    Price and rates for one asset on one venue.

    Attributes:
        venue: Venue identifier
        asset: Asset symbol
        price: USD price
        timestamp: When the venue produced the quote (epoch seconds)
        funding_rate_hourly: Perp funding per hour (fraction)
        borrow_apr: Borrow APR in percent
        supply_apr: Supply / staking APR in percent
        liquidity_usd: Depth available before significant impact
    """

    venue: str
    asset: str
    price: Decimal
    timestamp: float
    funding_rate_hourly: Decimal = ZERO
    borrow_apr: Decimal = ZERO
    supply_apr: Decimal = ZERO
    liquidity_usd: Decimal = ZERO

    @property
    def key(self) -> tuple:
        return (self.venue, self.asset)

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_fresh(self, now: float, max_age_sec: float) -> bool:
        return self.price > 0 and self.age(now) <= max_age_sec


@dataclass(frozen=True)
class MarketSnapshot:
    """Immutable point-in-time view of every reachable venue."""

    taken_at: float
    quotes: Mapping[tuple, VenueQuote] = field(default_factory=dict)
    venues: Mapping[str, Venue] = field(default_factory=dict)
    assets: Mapping[str, Asset] = field(default_factory=dict)
    yields: Mapping[tuple, YieldQuote] = field(default_factory=dict)
    unreachable: frozenset = frozenset()

    def __post_init__(self):
        object.__setattr__(self, "quotes", MappingProxyType(dict(self.quotes)))
        object.__setattr__(self, "venues", MappingProxyType(dict(self.venues)))
        object.__setattr__(self, "assets", MappingProxyType(dict(self.assets)))
        object.__setattr__(self, "yields", MappingProxyType(dict(self.yields)))
        object.__setattr__(self, "unreachable", frozenset(self.unreachable))

    @classmethod
    def build(
        cls,
        taken_at: float,
        quotes: Iterable[VenueQuote] = (),
        venues: Iterable[Venue] = (),
        assets: Iterable[Asset] = (),
        yields: Iterable[YieldQuote] = (),
        unreachable: Iterable[str] = (),
    ) -> "MarketSnapshot":
        return cls(
            taken_at=taken_at,
            quotes={q.key: q for q in quotes},
            venues={v.venue_id: v for v in venues},
            assets={a.symbol: a for a in assets},
            yields={y.key: y for y in yields},
            unreachable=frozenset(unreachable),
        )

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def asset(self, symbol: str) -> Asset:
        """Registered reference data, or a plain self-keyed asset."""
        return self.assets.get(symbol) or Asset(symbol)

    def venue(self, venue_id: str) -> Optional[Venue]:
        return self.venues.get(venue_id)

    def quote(self, venue: str, asset: str) -> Optional[VenueQuote]:
        return self.quotes.get((venue, asset))

    def quotes_for(self, asset: str) -> List[VenueQuote]:
        return sorted(
            (q for q in self.quotes.values() if q.asset == asset), key=lambda q: q.venue
        )

    def fresh_quotes_for(self, asset: str, now: float, max_age_sec: float) -> List[VenueQuote]:
        return [q for q in self.quotes_for(asset) if q.is_fresh(now, max_age_sec)]

    def price(
        self,
        asset: str,
        now: float,
        max_age_sec: float,
        venue: Optional[str] = None,
    ) -> Decimal:
        """
        Fresh USD price for ``asset``.

        Prefers the quote on ``venue``; otherwise the median of every fresh
        quote for the asset. Never defaults a missing price.

        Raises:
            StaleSnapshotError: No fresh quote exists
        """
        if venue is not None:
            own = self.quote(venue, asset)
            if own is not None and own.is_fresh(now, max_age_sec):
                return own.price

        fresh = self.fresh_quotes_for(asset, now, max_age_sec)
        if fresh:
            return statistics.median(sorted(q.price for q in fresh))

        known = self.quotes_for(asset)
        if not known:
            raise StaleSnapshotError(
                f"no price for {asset}", asset=asset, venue=venue
            )
        youngest = min(q.age(now) for q in known)
        raise StaleSnapshotError(
            f"every quote for {asset} is older than {max_age_sec:.0f}s",
            asset=asset,
            venue=venue,
            age_sec=youngest,
        )

    def rates(self, venue: str, asset: str) -> tuple:
        """
        (funding_rate_hourly, borrow_apr, supply_apr) for carry estimation.

        Protocol yields override the venue quote's own supply / borrow APR.
        """
        q = self.quote(venue, asset)
        funding = q.funding_rate_hourly if q else ZERO
        borrow = q.borrow_apr if q else ZERO
        supply = q.supply_apr if q else ZERO

        y = self.yields.get((venue, asset))
        if y is not None:
            supply = y.deposit_apr
            if y.borrow_apr is not None:
                borrow = y.borrow_apr
        return funding, borrow, supply

    def liquidity(self, venue: str, asset: str) -> Decimal:
        q = self.quote(venue, asset)
        return q.liquidity_usd if q else ZERO


# ═══════════════════════════════════════════════════════════════════════════════
# PROTOCOL DEFINITION (Structural Typing)
# ═══════════════════════════════════════════════════════════════════════════════


@runtime_checkable
class MarketDataSource(Protocol):
    """
    Market data collaborator for one venue.

    Quotes must be timestamped by the venue; the assembler, not the source,
    decides what is too old.
    """

    def get_name(self) -> str:
        """Return venue identifier (e.g. 'binance', 'eisen')."""
        ...

    async def fetch_venue(self) -> Venue:
        """Current venue reference data (kinds, fee schedule, leverage)."""
        ...

    async def fetch_quotes(self) -> List[VenueQuote]:
        """Timestamped quotes for every listed asset."""
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# SOURCE HEALTH TRACKING
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass
class SourceHealth:
    """Health metrics for a single market data source."""

    name: str
    success_count: int = 0
    failure_count: int = 0
    consecutive_failures: int = 0
    last_latency_ms: float = 0.0
    last_error: str = ""

    def record_success(self, latency_ms: float) -> None:
        self.success_count += 1
        self.consecutive_failures = 0
        self.last_latency_ms = latency_ms

    def record_failure(self, latency_ms: float, error: BaseException) -> None:
        self.failure_count += 1
        self.consecutive_failures += 1
        self.last_latency_ms = latency_ms
        self.last_error = repr(error)


# ═══════════════════════════════════════════════════════════════════════════════
# SNAPSHOT ASSEMBLER
# ═══════════════════════════════════════════════════════════════════════════════


class SnapshotAssembler:
    """
    Concurrently assembles a MarketSnapshot from every source.

    Usage:
        assembler = SnapshotAssembler([binance, eisen], assets=ASSETS)
        snapshot = await assembler.assemble(ledger.view(), config)
    """

    def __init__(
        self,
        sources: Iterable[MarketDataSource],
        assets: Iterable[Asset] = (),
        yield_fetcher: Optional[CombinedYieldFetcher] = None,
    ):
        self.sources = list(sources)
        self.assets = {a.symbol: a for a in assets}
        self.yield_fetcher = yield_fetcher
        self._health: Dict[str, SourceHealth] = {
            s.get_name(): SourceHealth(s.get_name()) for s in self.sources
        }

    async def _fetch_source(self, source: MarketDataSource, timeout: float) -> tuple:
        venue, quotes = await asyncio.wait_for(
            asyncio.gather(source.fetch_venue(), source.fetch_quotes()),
            timeout=timeout,
        )
        return venue, quotes

    async def _fetch_yields(self) -> List[YieldQuote]:
        if self.yield_fetcher is None:
            return []
        quotes, _failed = await self.yield_fetcher.fetch_all()
        return quotes

    async def assemble(
        self,
        ledger_view=None,
        config: Optional[EngineConfig] = None,
        now: Optional[float] = None,
    ) -> MarketSnapshot:
        """
        Fetch every source concurrently and validate the result.

        Args:
            ledger_view: Current LedgerView; venues holding open positions
                must be reachable
            config: Engine configuration (timeouts)
            now: Snapshot timestamp (defaults to wall clock)

        Raises:
            StaleSnapshotError: A venue holding an open position did not answer
        """
        config = config or EngineConfig()
        started = time.time()

        results = await asyncio.gather(
            *(self._fetch_source(s, config.snapshot_timeout_sec) for s in self.sources),
            self._fetch_yields(),
            return_exceptions=True,
        )
        latency_ms = (time.time() - started) * 1000
        taken_at = now if now is not None else time.time()

        venues: List[Venue] = []
        quotes: List[VenueQuote] = []
        unreachable: List[str] = []

        for source, result in zip(self.sources, results[:-1]):
            name = source.get_name()
            health = self._health.setdefault(name, SourceHealth(name))
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                health.record_failure(latency_ms, result)
                unreachable.append(name)
                Logger.warning(f"[SNAPSHOT] {name} unreachable: {result!r}")
                continue
            health.record_success(latency_ms)
            venue, venue_quotes = result
            venues.append(venue)
            quotes.extend(venue_quotes)

        yields = results[-1]
        if isinstance(yields, BaseException):
            if isinstance(yields, asyncio.CancelledError):
                raise yields
            Logger.warning(f"[SNAPSHOT] Yield fetch failed: {yields!r}")
            yields = []

        if ledger_view is not None:
            held = {p.venue for p in ledger_view.positions if p.is_open}
            blind = sorted(held.intersection(unreachable))
            if blind:
                raise StaleSnapshotError(
                    f"unreachable venue(s) {', '.join(blind)} hold open positions",
                    cycle_ts=taken_at,
                    venue=blind[0],
                )

        snapshot = MarketSnapshot.build(
            taken_at=taken_at,
            quotes=quotes,
            venues=venues,
            assets=self.assets.values(),
            yields=yields,
            unreachable=unreachable,
        )
        Logger.debug(
            f"[SNAPSHOT] {len(quotes)} quotes from {len(venues)} venues "
            f"({len(unreachable)} unreachable) in {latency_ms:.0f}ms"
        )
        return snapshot

    def get_health(self) -> Dict[str, SourceHealth]:
        return dict(self._health)
