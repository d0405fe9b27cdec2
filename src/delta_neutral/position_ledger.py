"""
Position Ledger
===============
The user's holdings and open hedges across every venue.

The ledger is the one piece of shared mutable state in the engine:
- Writes (confirmed executions, venue reconciliation) are serialized by a
  single lock and replace the current view wholesale.
- Readers call ``view()`` and get an immutable, versioned LedgerView that
  never changes under them (copy-on-write).

Only confirmed executions mutate the ledger. A fill report is applied at
most once per idempotency key.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, Iterable, Optional, Set, Tuple

from src.delta_neutral.action_catalog import settles_as
from src.delta_neutral.types import Action, ExecutionReport, Position, ZERO
from src.shared.system.logging import Logger


def _sorted(positions: Iterable[Position]) -> Tuple[Position, ...]:
    return tuple(sorted(positions, key=lambda p: (p.venue, p.asset, p.kind.value)))


def _merge_fill(
    existing: Optional[Position],
    action: Action,
    delta: Decimal,
    price: Decimal,
) -> Optional[Position]:
    """Fold a signed fill into a position; None when it closes flat."""
    kind = settles_as(action.kind)
    if existing is None or existing.quantity == 0:
        if delta == 0:
            return None
        return Position(action.venue, action.asset, kind, delta, price, action.leverage)

    q0, p0 = existing.quantity, existing.entry_price
    q1 = q0 + delta
    if q1 == 0:
        return None

    if (q0 > 0) == (delta > 0):
        # Increase: weighted average entry
        entry = (abs(q0) * p0 + abs(delta) * price) / (abs(q0) + abs(delta))
        leverage = action.leverage
    elif (q1 > 0) == (q0 > 0):
        # Partial reduce keeps the original entry
        entry = p0
        leverage = existing.leverage
    else:
        # Flipped through zero
        entry = price
        leverage = action.leverage
    return replace(existing, quantity=q1, entry_price=entry, leverage=leverage)


# =============================================================================
# LEDGER VIEW (immutable)
# =============================================================================


@dataclass(frozen=True)
class LedgerView:
    """
    Consistent, immutable read of the ledger at ``version``.

    Safe to hand to monitoring or UI collaborators while the cycle runs.
    """

    version: int
    positions: Tuple[Position, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not any(p.is_open for p in self.positions)

    def get(self, venue: str, asset: str, kind) -> Optional[Position]:
        for p in self.positions:
            if p.venue == venue and p.asset == asset and p.kind == kind:
                return p
        return None

    def by_venue(self, venue: str) -> Tuple[Position, ...]:
        return tuple(p for p in self.positions if p.venue == venue)

    def venues(self) -> frozenset:
        return frozenset(p.venue for p in self.positions if p.is_open)

    def assets(self) -> frozenset:
        return frozenset(p.asset for p in self.positions)

    def with_actions(self, actions: Iterable[Action]) -> "LedgerView":
        """
        Simulate fully filling ``actions`` at their reference price.

        Used by the optimizer to project exposure and leverage; the real
        ledger is untouched.
        """
        book: Dict[tuple, Position] = {p.key: p for p in self.positions}
        for action in actions:
            key = (action.venue, action.asset, settles_as(action.kind))
            merged = _merge_fill(book.get(key), action, action.quantity, action.reference_price)
            if merged is None:
                book.pop(key, None)
            else:
                book[key] = merged
        return LedgerView(self.version, _sorted(book.values()))

    def __len__(self) -> int:
        return len(self.positions)


# =============================================================================
# POSITION LEDGER (single writer)
# =============================================================================


class PositionLedger:
    """
    Versioned, single-writer store of Positions.

    Example:
        >>> ledger = PositionLedger()
        >>> ledger.apply_report(action, report)
        >>> view = ledger.view()
        >>> view.version
        1
    """

    def __init__(self, positions: Iterable[Position] = ()):
        self._lock = threading.Lock()
        self._view = LedgerView(0, _sorted(p for p in positions if p.is_open))
        self._applied: Set[str] = set()

    def view(self) -> LedgerView:
        """Current immutable view (reference read, no locking needed)."""
        return self._view

    @property
    def version(self) -> int:
        return self._view.version

    def has_applied(self, idempotency_key: str) -> bool:
        return idempotency_key in self._applied

    def apply_report(self, action: Action, report: ExecutionReport) -> bool:
        """
        Apply a confirmed fill.

        Returns:
            True if the ledger changed. Failed reports, zero fills and
            duplicate idempotency keys leave it untouched.
        """
        if report.idempotency_key != action.idempotency_key:
            raise ValueError(
                f"Report {report.idempotency_key} does not belong to {action.idempotency_key}"
            )
        if not report.success or report.filled_quantity == 0:
            return False

        filled = abs(report.filled_quantity)
        delta = filled if action.quantity > 0 else -filled
        price = report.fill_price if report.fill_price > 0 else action.reference_price

        with self._lock:
            if report.idempotency_key in self._applied:
                Logger.debug(f"[LEDGER] Duplicate fill {report.idempotency_key} ignored")
                return False

            current = self._view
            key = (action.venue, action.asset, settles_as(action.kind))
            book = {p.key: p for p in current.positions}
            merged = _merge_fill(book.get(key), action, delta, price)
            if merged is None:
                book.pop(key, None)
            else:
                book[key] = merged

            self._view = LedgerView(current.version + 1, _sorted(book.values()))
            self._applied.add(report.idempotency_key)

        Logger.info(
            f"[LEDGER] v{self._view.version} {action.venue}:{action.kind.value} "
            f"{'+' if delta > 0 else ''}{delta} {action.asset} @ {price}"
        )
        return True

    def reconcile(self, positions: Iterable[Position]) -> LedgerView:
        """
        Replace holdings with venue-reported positions (startup sync).

        Idempotency memory is kept so replayed fills stay ignored.
        """
        with self._lock:
            self._view = LedgerView(
                self._view.version + 1, _sorted(p for p in positions if p.is_open)
            )
        Logger.info(f"[LEDGER] Reconciled v{self._view.version}: {len(self._view)} positions")
        return self._view

    def valuation(self, snapshot, now: float, max_age_sec: float) -> Dict[str, Decimal]:
        """
        Mark every position to market.

        Returns:
            {"notional": Σ|qty × price|, "net": Σ qty × price,
             "unrealized_pnl": Σ qty × (price - entry)}

        Raises:
            StaleSnapshotError: A held asset has no fresh price
        """
        notional = net = pnl = ZERO
        for p in self._view.positions:
            if snapshot.asset(p.asset).stable:
                continue
            price = snapshot.price(p.asset, now, max_age_sec, venue=p.venue)
            value = p.quantity * price
            notional += abs(value)
            net += value
            if p.entry_price > 0:
                pnl += p.quantity * (price - p.entry_price)
        return {"notional": notional, "net": net, "unrealized_pnl": pnl}
