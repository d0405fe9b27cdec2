"""
Plan Execution
==============
Drives an ActionPlan through the execution collaborators.

- Actions flagged ``confidential`` go to the SecureExecutor, and never to
  the plain executor when none is wired
- Only confirmed fills reach the PositionLedger (single writer)
- The first failure stops the run with ExecutionPartialFailure carrying
  the index to resume from
- A confirmed fill short of the requested quantity by more than the asset
  quantum is booked and then stops the run as non-resumable, since later
  tranches assumed the full fill
"""

from __future__ import annotations

from typing import List, Optional

from src.delta_neutral.collaborators import ActionExecutor, SecureExecutor
from src.delta_neutral.plan_emitter import ActionPlan
from src.delta_neutral.position_ledger import PositionLedger
from src.delta_neutral.types import Action, ExecutionPartialFailure, ExecutionReport
from src.shared.system.logging import Logger


class PlanRunner:
    """Executes a plan from a start index and books confirmed fills."""

    def __init__(
        self,
        executor: ActionExecutor,
        ledger: PositionLedger,
        secure_executor: Optional[SecureExecutor] = None,
    ):
        self.executor = executor
        self.ledger = ledger
        self.secure_executor = secure_executor

    async def _dispatch(self, action: Action) -> ExecutionReport:
        if action.confidential:
            return await self.secure_executor.execute_confidential(action)
        return await self.executor.execute(action)

    def _failure(self, plan: ActionPlan, action: Action, message: str, **kwargs) -> ExecutionPartialFailure:
        return ExecutionPartialFailure(
            message,
            venue=action.venue,
            asset=action.asset,
            plan_id=plan.plan_id,
            failed_index=action.index,
            completed=action.index,
            **kwargs,
        )

    async def run(self, plan: ActionPlan, start: int = 0) -> List[ExecutionReport]:
        """
        Execute ``plan`` from ``start``.

        Already-booked idempotency keys are skipped, so resuming a plan
        never double-applies a fill.

        Raises:
            ExecutionPartialFailure: An action failed, its executor raised,
                it filled short, or it needs a SecureExecutor that is not wired
        """
        reports: List[ExecutionReport] = []
        for action in plan.resume_from(start):
            key = action.idempotency_key
            if self.ledger.has_applied(key):
                Logger.debug(f"[EXEC] {key} already booked, skipping")
                continue

            if action.confidential and self.secure_executor is None:
                Logger.error(f"[EXEC] {key} is confidential but no secure executor is wired")
                raise self._failure(plan, action, "confidential action without a secure executor")

            try:
                report = await self._dispatch(action)
            except Exception as e:
                Logger.error(f"[EXEC] {key} raised: {e!r}")
                raise self._failure(
                    plan, action, f"executor raised {type(e).__name__}: {e}"
                ) from e

            reports.append(report)
            if not report.success:
                Logger.warning(f"[EXEC] {key} failed: {report.error}")
                raise self._failure(plan, action, report.error or "execution failed")

            self.ledger.apply_report(action, report)

            shortfall = abs(action.quantity) - abs(report.filled_quantity)
            if shortfall > plan.asset(action.asset).quantum:
                Logger.warning(
                    f"[EXEC] {key} filled {abs(report.filled_quantity)} of "
                    f"{abs(action.quantity)} {action.asset}, stopping plan"
                )
                raise self._failure(
                    plan,
                    action,
                    f"short fill: {abs(report.filled_quantity)} of {abs(action.quantity)}",
                    resumable=False,
                )

        Logger.success(f"[EXEC] Plan {plan.plan_id} complete ({len(reports)} executed)")
        return reports
