"""
Delta Neutral Engine
====================
One evaluation cycle, as a strict pipeline:

    snapshot → exposure → trigger → optimizer → emitter
             → attestation → user approval → execution

Nothing produced inside a cycle (candidates, plans) survives it; the next
cycle starts again from fresh market data and the ledger's current view.
Every error is logged with the cycle timestamp and re-raised. Failures
that leave exposure unresolved put the trigger back in TRIGGERED.

Usage:
    # Paper mode (simulation)
    python -m src.delta_neutral.engine --cycles 3 --capital 10000
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Literal, Optional, Set

from src.delta_neutral.collaborators import (
    ActionExecutor,
    AttestationService,
    PlanApprover,
    SecureExecutor,
)
from src.delta_neutral.config import EngineConfig
from src.delta_neutral.exposure_calculator import compute
from src.delta_neutral.market_snapshot import SnapshotAssembler
from src.delta_neutral.plan_emitter import emit
from src.delta_neutral.plan_execution import PlanRunner
from src.delta_neutral.position_ledger import PositionLedger
from src.delta_neutral.rebalance_trigger import RebalanceTrigger, TriggerDecision
from src.delta_neutral.schemas import PlanPayload
from src.delta_neutral.strategy_optimizer import SearchBudget, optimize_async
from src.delta_neutral.types import (
    AttestationRejected,
    DeltaNeutralError,
    ExecutionPartialFailure,
    ExecutionReport,
    ExposureVector,
    RiskParams,
    StrategyCandidate,
)
from src.shared.system.logging import Logger


CycleOutcome = Literal["IDLE", "NOOP", "DECLINED", "EXECUTED"]


@dataclass
class CycleReport:
    """What one evaluation cycle did."""

    cycle_ts: float
    outcome: CycleOutcome
    exposure: ExposureVector
    decision: TriggerDecision
    candidate: Optional[StrategyCandidate] = None
    plan_id: Optional[str] = None
    proof: Optional[str] = None
    reports: List[ExecutionReport] = field(default_factory=list)

    def __repr__(self) -> str:
        return (
            f"CycleReport({self.outcome}, drift={self.decision.drift_pct:.2f}%, "
            f"plan={self.plan_id}, executed={len(self.reports)})"
        )


class DeltaNeutralEngine:
    """
    Orchestrates the evaluation cycle over injected collaborators.

    Example:
        >>> engine = DeltaNeutralEngine(assembler, ledger, risk, Decimal("10000"), executor)
        >>> report = await engine.run_cycle()
    """

    def __init__(
        self,
        assembler: SnapshotAssembler,
        ledger: PositionLedger,
        risk: RiskParams,
        capital: Decimal,
        executor: ActionExecutor,
        config: Optional[EngineConfig] = None,
        attestor: Optional[AttestationService] = None,
        approver: Optional[PlanApprover] = None,
        secure_executor: Optional[SecureExecutor] = None,
        trigger: Optional[RebalanceTrigger] = None,
        task_definition_id: str = "0",
    ):
        self.assembler = assembler
        self.ledger = ledger
        self.risk = risk
        self.capital = capital
        self.config = config or EngineConfig()
        self.attestor = attestor
        self.approver = approver
        self.trigger = trigger or RebalanceTrigger()
        self.runner = PlanRunner(executor, ledger, secure_executor)
        self.task_definition_id = task_definition_id

        self._rejected_plans: Set[str] = set()
        self._cycles = 0
        self._plans_executed = 0

    # =========================================================================
    # CYCLE
    # =========================================================================

    async def run_cycle(self, now: Optional[float] = None) -> CycleReport:
        """
        Run one evaluation cycle.

        Raises:
            StaleSnapshotError: Market data unusable, retry next tick
            InfeasibleStrategyError: No plan satisfies constraints
            OptimizerTimeoutError: Search budget exceeded, retry next tick
            AttestationRejected: Plan failed validation, never resubmitted
            ExecutionPartialFailure: Execution stopped after resume attempts
        """
        now = time.time() if now is None else now
        self._cycles += 1
        try:
            return await self._run(now)
        except DeltaNeutralError as e:
            if e.cycle_ts is None:
                e.cycle_ts = now
            Logger.error(f"[ENGINE] Cycle failed: {e}")
            raise

    async def _run(self, now: float) -> CycleReport:
        config = self.config
        view = self.ledger.view()
        tracked = [a.asset for a in self.risk.allocations]

        snapshot = await self.assembler.assemble(view, config, now)
        exposure = compute(view, snapshot, config, now, tracked)
        decision = self.trigger.observe(exposure, now, config)
        if not decision.triggered:
            Logger.debug(f"[ENGINE] Idle: {decision.reason}")
            return CycleReport(now, "IDLE", exposure, decision)

        Logger.info(f"[ENGINE] Triggered: {decision.reason}")
        self.trigger.begin_evaluation()
        try:
            candidate = await optimize_async(
                ExposureVector.zero(),
                self.capital,
                self.risk,
                snapshot,
                config,
                current=view,
                now=now,
                budget=SearchBudget(config.optimizer_budget_sec),
            )
            if candidate.is_empty:
                self.trigger.complete(candidate.projected_exposure, now)
                return CycleReport(now, "NOOP", exposure, decision, candidate)

            plan = emit(candidate, config, dict(snapshot.assets))
            # Length cap and tranching failures surface before any execution
            actions = plan.materialize()

            proof = None
            if plan.plan_id in self._rejected_plans:
                raise AttestationRejected(
                    "plan was already rejected", plan_id=plan.plan_id
                )
            if self.attestor is not None:
                payload = PlanPayload.from_plan(
                    candidate,
                    actions,
                    plan.plan_id,
                    snapshot.venues,
                    task_definition_id=self.task_definition_id,
                )
                verdict = await self.attestor.attest(payload)
                if not verdict.accepted:
                    self._rejected_plans.add(plan.plan_id)
                    raise AttestationRejected(
                        verdict.reason or "rejected by attestation",
                        plan_id=plan.plan_id,
                        proof=verdict.proof,
                    )
                proof = verdict.proof

            if self.approver is not None and not await self.approver.approve(candidate, plan):
                self.trigger.defer("plan declined by user")
                Logger.warning(f"[ENGINE] Plan {plan.plan_id} declined")
                return CycleReport(now, "DECLINED", exposure, decision, candidate, plan.plan_id, proof)

            self.trigger.complete(candidate.projected_exposure, now)
        except Exception as e:
            self.trigger.fail(e)
            raise

        try:
            reports = await self._execute(plan)
        except Exception as e:
            self.trigger.fail(e)
            raise

        self._plans_executed += 1
        Logger.success(f"[ENGINE] Plan {plan.plan_id} executed ({len(reports)} actions)")
        return CycleReport(now, "EXECUTED", exposure, decision, candidate, plan.plan_id, proof, reports)

    async def _execute(self, plan) -> List[ExecutionReport]:
        """
        Run the plan, resuming in-cycle up to max_resume_attempts times.

        Short fills are not resumed: the next cycle re-optimizes from the
        ledger while the trigger stays TRIGGERED.
        """
        reports: List[ExecutionReport] = []
        start = 0
        attempts = 0
        while True:
            try:
                reports.extend(await self.runner.run(plan, start))
                return reports
            except ExecutionPartialFailure as e:
                attempts += 1
                if not e.resumable or attempts > self.config.max_resume_attempts:
                    raise
                Logger.warning(
                    f"[ENGINE] Resuming plan {plan.plan_id} from #{e.resume_index} "
                    f"(attempt {attempts}/{self.config.max_resume_attempts})"
                )
                start = e.resume_index

    # =========================================================================
    # STATUS
    # =========================================================================

    def get_status(self) -> dict:
        state = self.trigger.state
        return {
            "cycles": self._cycles,
            "plans_executed": self._plans_executed,
            "rejected_plans": len(self._rejected_plans),
            "trigger_state": state.state.value,
            "last_drift_pct": str(state.last_drift_pct),
            "ledger_version": self.ledger.version,
        }


# =============================================================================
# CLI
# =============================================================================


async def main():
    """CLI entry point (paper collaborators)."""
    import argparse

    from src.delta_neutral.paper_engine import build_paper_engine

    parser = argparse.ArgumentParser(description="Delta Neutral Portfolio Engine")
    parser.add_argument("--capital", type=str, default="10000")
    parser.add_argument("--cycles", type=int, default=3)
    parser.add_argument("--interval", type=float, default=1.0, help="Seconds between cycles")
    args = parser.parse_args()

    engine = build_paper_engine(Decimal(args.capital), EngineConfig.from_settings())
    Logger.section("Delta Neutral Engine (paper)")

    for _ in range(args.cycles):
        try:
            report = await engine.run_cycle()
            Logger.info(f"[ENGINE] {report}")
        except DeltaNeutralError as e:
            Logger.warning(f"[ENGINE] Cycle aborted: {e}")
        await asyncio.sleep(args.interval)

    Logger.info(f"[ENGINE] Status: {engine.get_status()}")


if __name__ == "__main__":
    asyncio.run(main())
