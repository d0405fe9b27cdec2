"""
Yield Sources
=============
Deposit / borrow APRs from lending and staking protocols (Aave, Lido,
EigenLayer, ...), fetched concurrently and folded into the MarketSnapshot.

The optimizer uses these to price carry on lend, stake and borrow legs.
A protocol that does not answer within the timeout is skipped for the
cycle; its venue quotes keep their own rates.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Protocol, Sequence, runtime_checkable

from src.shared.system.logging import Logger


RAY = Decimal(10) ** 27


@dataclass(frozen=True, slots=True)
class YieldQuote:
    """
    One protocol rate.

    Attributes:
        venue: Protocol / venue identifier (e.g. "aave")
        asset: Asset symbol on that protocol (e.g. "USDC", "stETH")
        deposit_apr: Supply / staking APR in percent
        borrow_apr: Variable borrow APR in percent (None = not borrowable)
        timestamp: When the rate was read
    """

    venue: str
    asset: str
    deposit_apr: Decimal
    borrow_apr: Optional[Decimal] = None
    timestamp: float = 0.0

    @property
    def key(self) -> tuple:
        return (self.venue, self.asset)


def apr_from_ray(ray_rate: str) -> Decimal:
    """
    Convert a ray-denominated (1e27) rate string into an APR percentage.

    Example:
        >>> apr_from_ray("35000000000000000000000000")
        Decimal('3.5')
    """
    rate = Decimal(ray_rate)
    if rate < 0:
        raise ValueError(f"Invalid ray rate {ray_rate}: must be >= 0")
    return (rate / RAY * 100).normalize()


@runtime_checkable
class YieldSource(Protocol):
    """Any protocol adapter that can report its current APRs."""

    def get_name(self) -> str:
        """Return protocol identifier (e.g. 'aave')."""
        ...

    async def get_apr(self) -> List[YieldQuote]:
        """Current deposit / borrow APRs for every listed asset."""
        ...


class CombinedYieldFetcher:
    """
    Fan-out fetcher over several YieldSources.

    Usage:
        fetcher = CombinedYieldFetcher([aave, lido, eigen], timeout_sec=3.0)
        quotes, failed = await fetcher.fetch_all()
    """

    def __init__(self, sources: Sequence[YieldSource], timeout_sec: float = 5.0):
        self.sources = list(sources)
        self.timeout_sec = timeout_sec

    async def _fetch_one(self, source: YieldSource) -> List[YieldQuote]:
        quotes = await asyncio.wait_for(source.get_apr(), timeout=self.timeout_sec)
        now = time.time()
        return [
            q if q.timestamp else YieldQuote(q.venue, q.asset, q.deposit_apr, q.borrow_apr, now)
            for q in quotes
        ]

    async def fetch_all(self) -> tuple:
        """
        Returns:
            (quotes, failed) where ``failed`` lists protocols that errored or
            timed out this round.
        """
        results = await asyncio.gather(
            *(self._fetch_one(s) for s in self.sources), return_exceptions=True
        )

        quotes: List[YieldQuote] = []
        failed: List[str] = []
        for source, result in zip(self.sources, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                failed.append(source.get_name())
                Logger.warning(f"[YIELD] {source.get_name()} unavailable: {result!r}")
                continue
            quotes.extend(result)

        Logger.debug(f"[YIELD] {len(quotes)} rates from {len(self.sources) - len(failed)} protocols")
        return quotes, failed
