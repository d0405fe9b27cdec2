"""
Delta Neutral Types Unit Tests
==============================
Tests for reference data, actions, exposure vectors and the error taxonomy.

All tests are PURE LOGIC - no network or mocks required.
"""

import pytest
from decimal import Decimal

from src.delta_neutral.types import (
    Action,
    ActionKind,
    Asset,
    AttestationRejected,
    CostBreakdown,
    ExecutionPartialFailure,
    ExposureVector,
    InfeasibleStrategyError,
    OptimizerTimeoutError,
    Position,
    StaleSnapshotError,
    Venue,
    VenueCategory,
)


# =============================================================================
# TEST: REFERENCE DATA
# =============================================================================


@pytest.mark.unit
class TestAsset:
    """Tests for exposure keys and precision."""

    def test_plain_asset_keys_to_itself(self):
        assert Asset("ETH").exposure_key == "ETH"

    def test_derivative_rolls_up_to_underlying(self):
        assert Asset("stETH", underlying="ETH").exposure_key == "ETH"

    def test_synthetic_keeps_own_key(self):
        """A protocol-hedged share is never folded into its underlying."""
        asset = Asset("dnETH", underlying="ETH", synthetic=True)
        assert asset.exposure_key == "dnETH"

    def test_quantum_follows_decimals(self):
        assert Asset("ETH", decimals=6).quantum == Decimal("0.000001")
        assert Asset("BTC", decimals=0).quantum == Decimal("1")


@pytest.mark.unit
class TestVenue:

    def test_fee_rate_from_bps(self):
        venue = Venue("binance", VenueCategory.CEX, frozenset({ActionKind.PERP}),
                      {ActionKind.PERP: Decimal("4")})
        assert venue.fee_rate(ActionKind.PERP) == Decimal("0.0004")
        assert venue.fee_rate(ActionKind.SPOT) == 0

    def test_supports(self):
        venue = Venue("eisen", VenueCategory.DEX, frozenset({ActionKind.SWAP}))
        assert venue.supports(ActionKind.SWAP)
        assert not venue.supports(ActionKind.PERP)


# =============================================================================
# TEST: POSITIONS & ACTIONS
# =============================================================================


@pytest.mark.unit
class TestPosition:

    def test_leverage_below_one_rejected(self):
        with pytest.raises(ValueError):
            Position("binance", "ETH", ActionKind.PERP, Decimal("-1"), leverage=Decimal("0.5"))

    def test_is_open(self):
        assert Position("eisen", "ETH", ActionKind.SPOT, Decimal("1")).is_open
        assert not Position("eisen", "ETH", ActionKind.SPOT, Decimal("0")).is_open


@pytest.mark.unit
class TestAction:

    def test_idempotency_key_requires_emission(self):
        action = Action("eisen", ActionKind.SWAP, "ETH", Decimal("1"))
        with pytest.raises(ValueError):
            _ = action.idempotency_key

    def test_idempotency_key_format(self):
        action = Action("eisen", ActionKind.SWAP, "ETH", Decimal("1"), plan_id="abc", index=3)
        assert action.idempotency_key == "abc:3"

    def test_side_and_notional(self):
        action = Action("binance", ActionKind.PERP, "ETH", Decimal("-2"),
                        reference_price=Decimal("2500"))
        assert action.side == "SELL"
        assert action.notional_usd == Decimal("5000")

    def test_actions_are_immutable(self):
        action = Action("eisen", ActionKind.SWAP, "ETH", Decimal("1"))
        with pytest.raises(AttributeError):
            action.quantity = Decimal("2")


# =============================================================================
# TEST: EXPOSURE VECTOR
# =============================================================================


@pytest.mark.unit
class TestExposureVector:

    def test_zero_is_exact(self):
        vector = ExposureVector.zero(["ETH", "BTC"])
        assert vector.get("ETH") == Decimal(0)
        assert vector.max_abs() == 0
        assert vector.is_neutral(Decimal(0))

    def test_missing_key_reads_zero(self):
        assert ExposureVector().get("SOL") == 0

    def test_synthetic_keys_excluded_from_neutrality(self):
        vector = ExposureVector(
            net={"ETH": Decimal("10"), "dnETH": Decimal("5000")},
            synthetic={"dnETH"},
        )
        assert vector.directional() == {"ETH": Decimal("10")}
        assert vector.is_neutral(Decimal("25"))

    def test_within_checks_both_key_sets(self):
        current = ExposureVector(net={"ETH": Decimal("10")})
        target = ExposureVector(net={"BTC": Decimal("100")})
        assert current.deviation_from(target) == {"BTC": Decimal("-100"), "ETH": Decimal("10")}
        assert not current.within(target, Decimal("25"))
        assert current.within(target, Decimal("100"))

    def test_mappings_are_read_only(self):
        vector = ExposureVector(net={"ETH": Decimal("1")})
        with pytest.raises(TypeError):
            vector.net["ETH"] = Decimal("2")

    def test_to_dict_keeps_precision(self):
        vector = ExposureVector(net={"ETH": Decimal("0.000001")})
        assert vector.to_dict() == {"ETH": "0.000001"}


@pytest.mark.unit
class TestCostBreakdown:

    def test_total_and_add(self):
        a = CostBreakdown(fees=Decimal("1"), slippage=Decimal("2"), carry=Decimal("-5"))
        b = CostBreakdown(fees=Decimal("3"))
        assert (a + b).total == Decimal("1")


# =============================================================================
# TEST: ERROR TAXONOMY
# =============================================================================


@pytest.mark.unit
class TestErrors:

    def test_context_in_message(self):
        err = StaleSnapshotError("no price for ETH", cycle_ts=12.5, asset="ETH", age_sec=40.0)
        text = str(err)
        assert "STALE SNAPSHOT" in text
        assert "asset=ETH" in text
        assert "age 40.0s" in text
        assert "cycle=12.500" in text

    def test_attestation_rejection_is_infeasible(self):
        """Rejected plans are handled like infeasible strategies."""
        err = AttestationRejected("bad plan", plan_id="p1")
        assert isinstance(err, InfeasibleStrategyError)
        assert "p1" in str(err)

    def test_partial_failure_resume_index(self):
        err = ExecutionPartialFailure("boom", plan_id="p1", failed_index=3, completed=3)
        assert err.resume_index == 3
        assert "#3" in str(err)

    def test_timeout_carries_budget(self):
        err = OptimizerTimeoutError("slow", budget_sec=2.0, evaluated=17)
        assert "2.00s" in str(err)
        assert "17" in str(err)

    def test_errors_are_raisable(self):
        with pytest.raises(InfeasibleStrategyError) as exc:
            raise InfeasibleStrategyError("nothing fits", evaluated=4)
        assert exc.value.evaluated == 4
