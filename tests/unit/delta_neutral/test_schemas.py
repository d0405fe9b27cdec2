"""
Plan Schema Unit Tests
======================
Tests for the attestation payload and the venue-grouped strategy document.
"""

import pytest
from decimal import Decimal

from src.delta_neutral.schemas import ActionPayload, PlanPayload
from src.delta_neutral.types import (
    Action,
    ActionKind,
    CostBreakdown,
    ExposureVector,
    StrategyCandidate,
    VenueCategory,
)


def _actions():
    return (
        Action("binance", ActionKind.PERP, "ETH", Decimal("-4"), leverage=Decimal("5"),
               reference_price=Decimal("2500"), role="HEDGE", plan_id="p1", index=0),
        Action("eisen", ActionKind.SWAP, "ETH", Decimal("4"), quote_asset="USDC",
               reference_price=Decimal("2500"), plan_id="p1", index=1),
    )


def _candidate(actions):
    return StrategyCandidate(
        actions=actions,
        projected_exposure=ExposureVector.zero(["ETH"]),
        base_exposure=ExposureVector.zero(["ETH"]),
        cost=CostBreakdown(fees=Decimal("34"), slippage=Decimal("30"), carry=Decimal("-16.8")),
        gross_notional=Decimal("20000"),
        margin_required=Decimal("12000"),
        min_liquidity_usd=Decimal("500000"),
        snapshot_ts=1.0,
    )


@pytest.mark.unit
class TestActionPayload:

    def test_from_action(self):
        payload = ActionPayload.from_action(_actions()[0], VenueCategory.CEX)

        assert payload.key == "p1:0"
        assert payload.kind == "perp"
        assert payload.quantity == "-4"
        assert payload.leverage == "5"

    def test_order_shape(self):
        order = ActionPayload.from_action(_actions()[0], VenueCategory.CEX).to_order()
        assert order == {"position": "perp", "token": "ETH", "amount": "4", "price": "2500", "side": "SELL"}

    def test_buy_swap_spends_quote(self):
        swap = ActionPayload.from_action(_actions()[1], VenueCategory.DEX).to_swap()
        assert swap == {"tokenIn": "USDC", "tokenOut": "ETH", "amount": "10000"}

    def test_sell_swap_spends_base(self):
        action = Action("eisen", ActionKind.SWAP, "ETH", Decimal("-1"), quote_asset="USDC",
                        reference_price=Decimal("2500"), plan_id="p1", index=2)
        swap = ActionPayload.from_action(action, VenueCategory.DEX).to_swap()
        assert swap == {"tokenIn": "ETH", "tokenOut": "USDC", "amount": "1"}

    def test_unemitted_action_rejected(self):
        with pytest.raises(ValueError):
            ActionPayload.from_action(Action("eisen", ActionKind.SWAP, "ETH", Decimal("1")), VenueCategory.DEX)


@pytest.mark.unit
class TestPlanPayload:

    def test_from_plan(self, venues):
        actions = _actions()
        payload = PlanPayload.from_plan(_candidate(actions), actions, "p1", venues, task_definition_id="7")

        assert payload.plan_id == "p1"
        assert [a.category for a in payload.actions] == ["CEX", "DEX"]
        assert payload.cost.total == "47.2"
        assert payload.projected_exposure == {"ETH": "0"}
        assert payload.task_definition_id == "7"

    def test_strategy_document_groups_by_venue(self, venues):
        actions = _actions()
        document = PlanPayload.from_plan(_candidate(actions), actions, "p1", venues).to_strategy_document()

        exchanges = document["exchanges"]
        assert set(exchanges) == {"binance", "eisen"}
        assert exchanges["binance"]["orders"][0]["side"] == "SELL"
        assert exchanges["eisen"]["swaps"][0]["tokenOut"] == "ETH"
        assert "orders" not in exchanges["eisen"]

    def test_json_round_trip_keeps_precision(self, venues):
        actions = _actions()
        payload = PlanPayload.from_plan(_candidate(actions), actions, "p1", venues)

        restored = PlanPayload.model_validate_json(payload.model_dump_json())
        assert restored == payload
