"""
Position Ledger Unit Tests
==========================
Tests for idempotent fill application, versioned views and valuation.
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal

from src.delta_neutral.position_ledger import LedgerView, PositionLedger
from src.delta_neutral.types import Action, ActionKind, ExecutionReport, Position


def _fill(venue, kind, qty, price, index, plan_id="plan"):
    action = Action(
        venue, kind, "ETH", Decimal(qty),
        reference_price=Decimal(price), plan_id=plan_id, index=index,
    )
    report = ExecutionReport(action.idempotency_key, True, abs(Decimal(qty)), Decimal(price))
    return action, report


# =============================================================================
# TEST: FILL APPLICATION
# =============================================================================


@pytest.mark.unit
class TestApplyReport:

    def test_swap_lands_in_spot_bucket(self):
        ledger = PositionLedger()
        assert ledger.apply_report(*_fill("eisen", ActionKind.SWAP, "2", "2500", 0))

        position = ledger.view().get("eisen", "ETH", ActionKind.SPOT)
        assert position.quantity == Decimal("2")
        assert position.entry_price == Decimal("2500")
        assert ledger.version == 1

    def test_duplicate_key_applied_once(self):
        ledger = PositionLedger()
        action, report = _fill("binance", ActionKind.PERP, "-1", "2500", 0)

        assert ledger.apply_report(action, report)
        assert not ledger.apply_report(action, report)
        assert ledger.view().get("binance", "ETH", ActionKind.PERP).quantity == Decimal("-1")
        assert ledger.version == 1
        assert ledger.has_applied("plan:0")

    def test_failed_report_ignored(self):
        ledger = PositionLedger()
        action, _ = _fill("eisen", ActionKind.SWAP, "1", "2500", 0)
        report = ExecutionReport(action.idempotency_key, False, error="rejected")

        assert not ledger.apply_report(action, report)
        assert ledger.view().is_empty
        assert not ledger.has_applied(action.idempotency_key)

    def test_foreign_report_rejected(self):
        ledger = PositionLedger()
        action, _ = _fill("eisen", ActionKind.SWAP, "1", "2500", 0)
        with pytest.raises(ValueError):
            ledger.apply_report(action, ExecutionReport("other:9", True, Decimal("1")))

    def test_partial_fill_uses_filled_quantity(self):
        ledger = PositionLedger()
        action, _ = _fill("binance", ActionKind.PERP, "-2", "2500", 0)
        ledger.apply_report(action, ExecutionReport("plan:0", True, Decimal("0.5"), Decimal("2500")))

        assert ledger.view().get("binance", "ETH", ActionKind.PERP).quantity == Decimal("-0.5")

    def test_weighted_entry_on_increase(self):
        ledger = PositionLedger()
        ledger.apply_report(*_fill("eisen", ActionKind.SPOT, "1", "2000", 0))
        ledger.apply_report(*_fill("eisen", ActionKind.SPOT, "1", "3000", 1))

        assert ledger.view().get("eisen", "ETH", ActionKind.SPOT).entry_price == Decimal("2500")

    def test_reduce_keeps_entry_and_close_removes(self):
        ledger = PositionLedger()
        ledger.apply_report(*_fill("eisen", ActionKind.SPOT, "2", "2000", 0))
        ledger.apply_report(*_fill("eisen", ActionKind.SPOT, "-1", "3000", 1))

        position = ledger.view().get("eisen", "ETH", ActionKind.SPOT)
        assert position.quantity == Decimal("1")
        assert position.entry_price == Decimal("2000")

        ledger.apply_report(*_fill("eisen", ActionKind.SPOT, "-1", "3000", 2))
        assert ledger.view().get("eisen", "ETH", ActionKind.SPOT) is None
        assert ledger.version == 3

    def test_concurrent_writers_serialized(self):
        ledger = PositionLedger()
        fills = [_fill("eisen", ActionKind.SPOT, "1", "2500", i) for i in range(50)]

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(lambda f: ledger.apply_report(*f), fills))

        assert ledger.version == 50
        assert ledger.view().get("eisen", "ETH", ActionKind.SPOT).quantity == Decimal("50")


# =============================================================================
# TEST: VIEWS
# =============================================================================


@pytest.mark.unit
class TestLedgerView:

    def test_old_view_never_changes(self):
        ledger = PositionLedger()
        before = ledger.view()
        ledger.apply_report(*_fill("eisen", ActionKind.SPOT, "1", "2500", 0))

        assert before.version == 0
        assert before.is_empty
        assert ledger.view().version == 1

    def test_with_actions_simulates_without_mutation(self):
        view = LedgerView(3, (Position("binance", "ETH", ActionKind.PERP, Decimal("-4"), leverage=Decimal("5")),))
        hedge = Action("binance", ActionKind.PERP, "ETH", Decimal("1"), reference_price=Decimal("2500"))
        entry = Action("eisen", ActionKind.SWAP, "ETH", Decimal("3"), reference_price=Decimal("2500"))

        simulated = view.with_actions([hedge, entry])

        assert simulated.get("binance", "ETH", ActionKind.PERP).quantity == Decimal("-3")
        assert simulated.get("eisen", "ETH", ActionKind.SPOT).quantity == Decimal("3")
        assert view.get("binance", "ETH", ActionKind.PERP).quantity == Decimal("-4")
        assert simulated.version == 3

    def test_reconcile_replaces_holdings(self):
        ledger = PositionLedger([Position("eisen", "ETH", ActionKind.SPOT, Decimal("1"))])
        view = ledger.reconcile([
            Position("binance", "ETH", ActionKind.PERP, Decimal("-1")),
            Position("eisen", "ETH", ActionKind.SPOT, Decimal("0")),
        ])

        assert view.version == 1
        assert len(view) == 1
        assert view.venues() == frozenset({"binance"})


@pytest.mark.unit
class TestValuation:

    def test_marks_to_market(self, make_snapshot, make_quote, now):
        ledger = PositionLedger([
            Position("eisen", "ETH", ActionKind.SPOT, Decimal("2"), entry_price=Decimal("2000")),
            Position("binance", "ETH", ActionKind.PERP, Decimal("-2"), entry_price=Decimal("2500")),
            Position("eisen", "USDC", ActionKind.SPOT, Decimal("1000")),
        ])
        snapshot = make_snapshot([make_quote("eisen"), make_quote("binance")])

        value = ledger.valuation(snapshot, now, 30)

        assert value["notional"] == Decimal("10000")
        assert value["net"] == 0
        assert value["unrealized_pnl"] == Decimal("1000")
