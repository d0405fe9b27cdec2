"""
Plan Schemas
============
Pydantic models for the contract between the engine and its external
attestation / execution collaborators.

Amounts travel as strings so Decimal precision survives JSON.
``to_strategy_document()`` renders the venue-grouped strategy shape the
execution agents consume: CEX venues get ``orders``, DEX venues get
``swaps`` (plus ``orders`` for non-swap kinds).
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Literal, Mapping, Optional

from pydantic import BaseModel, Field

from src.delta_neutral.types import Action, ActionKind, StrategyCandidate, Venue, VenueCategory


class ActionPayload(BaseModel):
    """
    One emitted action.

    Example:
        payload = ActionPayload(
            key="3f2a9c0b11d4e5f6:0",
            venue="binance",
            category="CEX",
            kind="perp",
            asset="ETH",
            quantity="-4",
            leverage="5",
        )
    """

    key: str = Field(..., description="Idempotency key (plan_id:index)")
    venue: str
    category: Literal["CEX", "DEX"]
    kind: Literal["spot", "margin", "perp", "lend", "borrow", "stake", "swap"]
    asset: str
    quote_asset: Optional[str] = None
    quantity: str = Field(..., description="Signed base quantity")
    limit_price: Optional[str] = None
    reference_price: str = "0"
    leverage: str = "1"
    role: Literal["REDUCE", "HEDGE", "ENTRY"] = "ENTRY"

    @classmethod
    def from_action(cls, action: Action, category: VenueCategory) -> "ActionPayload":
        return cls(
            key=action.idempotency_key,
            venue=action.venue,
            category=category.value,
            kind=action.kind.value,
            asset=action.asset,
            quote_asset=action.quote_asset,
            quantity=str(action.quantity),
            limit_price=None if action.limit_price is None else str(action.limit_price),
            reference_price=str(action.reference_price),
            leverage=str(action.leverage),
            role=action.role,
        )

    def to_order(self) -> dict:
        qty = Decimal(self.quantity)
        return {
            "position": self.kind,
            "token": self.asset,
            "amount": str(abs(qty)),
            "price": self.limit_price or self.reference_price,
            "side": "BUY" if qty > 0 else "SELL",
        }

    def to_swap(self) -> dict:
        qty = Decimal(self.quantity)
        quote = self.quote_asset or "USDC"
        if qty > 0:
            return {"tokenIn": quote, "tokenOut": self.asset, "amount": str(qty * Decimal(self.reference_price))}
        return {"tokenIn": self.asset, "tokenOut": quote, "amount": str(-qty)}


class CostPayload(BaseModel):
    fees: str
    slippage: str
    carry: str
    total: str


class PlanPayload(BaseModel):
    """
    Complete plan submitted for attestation.

    Example:
        payload = PlanPayload.from_plan(candidate, plan.materialize(), plan.plan_id, venues)
        verdict = await attestor.attest(payload)
    """

    plan_id: str
    snapshot_ts: float
    actions: List[ActionPayload] = Field(..., description="Ordered actions")
    base_exposure: Dict[str, str] = Field(default_factory=dict)
    projected_exposure: Dict[str, str] = Field(default_factory=dict)
    cost: CostPayload
    gross_notional: str
    margin_required: str
    task_definition_id: str = "0"

    @classmethod
    def from_plan(
        cls,
        candidate: StrategyCandidate,
        actions,
        plan_id: str,
        venues: Mapping[str, Venue],
        task_definition_id: str = "0",
    ) -> "PlanPayload":
        def category(venue_id: str) -> VenueCategory:
            venue = venues.get(venue_id)
            return venue.category if venue else VenueCategory.CEX

        return cls(
            plan_id=plan_id,
            snapshot_ts=candidate.snapshot_ts,
            actions=[ActionPayload.from_action(a, category(a.venue)) for a in actions],
            base_exposure=candidate.base_exposure.to_dict(),
            projected_exposure=candidate.projected_exposure.to_dict(),
            cost=CostPayload(
                fees=str(candidate.cost.fees),
                slippage=str(candidate.cost.slippage),
                carry=str(candidate.cost.carry),
                total=str(candidate.cost.total),
            ),
            gross_notional=str(candidate.gross_notional),
            margin_required=str(candidate.margin_required),
            task_definition_id=task_definition_id,
        )

    def to_strategy_document(self) -> dict:
        """Venue-grouped strategy: {"exchanges": {venue: {"orders": [...], "swaps": [...]}}}"""
        exchanges: Dict[str, dict] = {}
        for a in self.actions:
            venue = exchanges.setdefault(a.venue, {})
            if a.category == "DEX" and a.kind == ActionKind.SWAP.value:
                venue.setdefault("swaps", []).append(a.to_swap())
            else:
                venue.setdefault("orders", []).append(a.to_order())
        return {"exchanges": exchanges}
