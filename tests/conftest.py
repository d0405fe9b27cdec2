"""
Chill PM Test Configuration
===========================
Shared fixtures and pytest markers for the test suite.

Reference data mirrors a small ETH basis book: a CEX perp venue, a DEX
swap venue and a staking venue, all quoting ETH at $2,500.
"""

import pytest
import os
import sys
from decimal import Decimal

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from src.delta_neutral.config import EngineConfig
from src.delta_neutral.market_snapshot import MarketSnapshot, VenueQuote
from src.delta_neutral.types import (
    ActionKind,
    Allocation,
    Asset,
    ExposureVector,
    RiskParams,
    Venue,
    VenueCategory,
)


NOW = 1_700_000_000.0
ETH_PRICE = Decimal("2500")


# ============================================================================
# PYTEST MARKERS
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "unit: pure logic tests"
    )
    config.addinivalue_line(
        "markers", "integration: marks integration tests"
    )


# ============================================================================
# REFERENCE DATA
# ============================================================================

@pytest.fixture
def now():
    return NOW


@pytest.fixture
def assets():
    """ETH, a staked derivative, a protocol-hedged vault share and a stable."""
    return {
        "ETH": Asset("ETH", "ethereum", decimals=6),
        "stETH": Asset("stETH", "ethereum", decimals=6, underlying="ETH"),
        "dnETH": Asset("dnETH", "ethereum", decimals=6, synthetic=True),
        "USDC": Asset("USDC", "ethereum", decimals=6, stable=True),
    }


@pytest.fixture
def venues():
    return {
        "binance": Venue(
            "binance",
            VenueCategory.CEX,
            frozenset({ActionKind.PERP}),
            {ActionKind.PERP: Decimal("4")},
            max_leverage=Decimal("5"),
        ),
        "eisen": Venue(
            "eisen",
            VenueCategory.DEX,
            frozenset({ActionKind.SWAP}),
            {ActionKind.SWAP: Decimal("30")},
        ),
        "lido": Venue(
            "lido",
            VenueCategory.DEX,
            frozenset({ActionKind.STAKE}),
            {ActionKind.STAKE: Decimal("0")},
        ),
    }


@pytest.fixture
def make_quote():
    """Factory for fresh VenueQuotes at NOW."""
    def _make(venue, asset="ETH", price=ETH_PRICE, age=0.0, liquidity="1000000", **rates):
        return VenueQuote(
            venue,
            asset,
            Decimal(price),
            NOW - age,
            liquidity_usd=Decimal(liquidity),
            **rates,
        )
    return _make


@pytest.fixture
def make_snapshot(assets, venues):
    """Factory for MarketSnapshots over the shared reference data."""
    def _make(quotes, venue_ids=None, yields=(), taken_at=NOW):
        chosen = venues if venue_ids is None else {v: venues[v] for v in venue_ids}
        return MarketSnapshot.build(
            taken_at=taken_at,
            quotes=quotes,
            venues=chosen.values(),
            assets=assets.values(),
            yields=yields,
        )
    return _make


@pytest.fixture
def basis_snapshot(make_snapshot, make_quote):
    """binance perp + eisen swap, both deep enough for a $10k book."""
    return make_snapshot(
        [
            make_quote("binance", liquidity="1000000", funding_rate_hourly=Decimal("0.00001")),
            make_quote("eisen", liquidity="500000"),
        ],
        venue_ids=["binance", "eisen"],
    )


@pytest.fixture
def config():
    return EngineConfig(epsilon_usd=Decimal("25"))


@pytest.fixture
def risk():
    return RiskParams(
        max_leverage=Decimal("5"),
        allocations=(Allocation("ETH", Decimal("10000")),),
    )


@pytest.fixture
def zero_target():
    """The usual optimizer target: exactly flat."""
    return ExposureVector.zero()
