"""
External Collaborator Contracts
===============================
Narrow structural interfaces the core consumes. Anything implementing
these methods can be plugged into the engine (paper adapters, exchange
executors, attestation task runners, a UI approval prompt).

The core never sees credentials or signatures: confidential actions go to
a SecureExecutor and only an ExecutionReport comes back.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol, runtime_checkable

from src.delta_neutral.market_snapshot import MarketDataSource
from src.delta_neutral.types import Action, ExecutionReport, StrategyCandidate
from src.delta_neutral.yields import YieldSource


@dataclass(frozen=True, slots=True)
class AttestationResult:
    """Verdict of the attestation / validation collaborator."""

    accepted: bool
    proof: Optional[str] = None
    reason: str = ""


@runtime_checkable
class ActionExecutor(Protocol):
    """Executes one action and reports fill quantity / price."""

    async def execute(self, action: Action) -> ExecutionReport:
        ...


@runtime_checkable
class SecureExecutor(Protocol):
    """Executes actions that need credentials or signing."""

    async def execute_confidential(self, action: Action) -> ExecutionReport:
        ...


@runtime_checkable
class AttestationService(Protocol):
    """Validates a plan; rejection is treated like an infeasible strategy."""

    async def attest(self, payload) -> AttestationResult:
        """``payload`` is a schemas.PlanPayload."""
        ...


@runtime_checkable
class PlanApprover(Protocol):
    """User-facing approval gate before any action is released."""

    async def approve(self, candidate: StrategyCandidate, plan) -> bool:
        ...


__all__ = [
    "ActionExecutor",
    "AttestationResult",
    "AttestationService",
    "MarketDataSource",
    "PlanApprover",
    "SecureExecutor",
    "YieldSource",
]
