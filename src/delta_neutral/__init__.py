"""
Delta Neutral Portfolio Engine
==============================
Builds and maintains a hedged, delta-neutral book across CEX and DEX venues.

Pipeline per evaluation cycle:
- Market Snapshot: concurrent venue quotes + protocol yields
- Position Ledger: versioned single-writer holdings
- Exposure Calculator: net USD exposure per underlying
- Rebalance Trigger: decides when drift is worth acting on
- Strategy Optimizer: cheapest feasible action set within epsilon
- Action Plan Emitter: ordered, partial-failure-safe, restartable plan

Exports the pure components; the engine, monitor and paper collaborators
are loaded lazily.
"""

from src.delta_neutral.types import (
    Action,
    ActionKind,
    Allocation,
    Asset,
    AttestationRejected,
    CostBreakdown,
    DeltaNeutralError,
    DriftMode,
    ExecutionPartialFailure,
    ExecutionReport,
    ExposureVector,
    InfeasibleStrategyError,
    OptimizerTimeoutError,
    Position,
    RebalanceState,
    RiskParams,
    StaleSnapshotError,
    StrategyCandidate,
    TriggerState,
    Venue,
    VenueCategory,
)
from src.delta_neutral.config import EngineConfig
from src.delta_neutral.market_snapshot import MarketSnapshot, SnapshotAssembler, VenueQuote
from src.delta_neutral.position_ledger import LedgerView, PositionLedger
from src.delta_neutral.exposure_calculator import compute, drift_between
from src.delta_neutral.strategy_optimizer import SearchBudget, optimize, optimize_async
from src.delta_neutral.rebalance_trigger import RebalanceTrigger, TriggerDecision
from src.delta_neutral.plan_emitter import ActionPlan, emit

__all__ = [
    # Types
    "Action",
    "ActionKind",
    "Allocation",
    "Asset",
    "CostBreakdown",
    "DriftMode",
    "ExecutionReport",
    "ExposureVector",
    "Position",
    "RebalanceState",
    "RiskParams",
    "StrategyCandidate",
    "TriggerState",
    "Venue",
    "VenueCategory",
    # Errors
    "DeltaNeutralError",
    "StaleSnapshotError",
    "InfeasibleStrategyError",
    "OptimizerTimeoutError",
    "ExecutionPartialFailure",
    "AttestationRejected",
    # Components
    "EngineConfig",
    "MarketSnapshot",
    "SnapshotAssembler",
    "VenueQuote",
    "LedgerView",
    "PositionLedger",
    "compute",
    "drift_between",
    "SearchBudget",
    "optimize",
    "optimize_async",
    "RebalanceTrigger",
    "TriggerDecision",
    "ActionPlan",
    "emit",
]


# Lazy imports for modules with collaborators (avoid circular imports)
def get_engine():
    """Lazy import for DeltaNeutralEngine."""
    from src.delta_neutral.engine import DeltaNeutralEngine, CycleReport
    return DeltaNeutralEngine, CycleReport


def get_neutrality_monitor():
    """Lazy import for NeutralityMonitor."""
    from src.delta_neutral.neutrality_monitor import NeutralityMonitor, MonitorConfig
    return NeutralityMonitor, MonitorConfig


def get_paper_engine():
    """Lazy import for the paper-mode engine factory."""
    from src.delta_neutral.paper_engine import build_paper_engine
    return build_paper_engine
