"""
Delta Neutral Engine Unit Tests
===============================
End-to-end evaluation cycles over the paper collaborators.

The paper book: $10,000 ETH allocation, binance perp (5x), eisen swap and
lido staking, epsilon $250.
"""

import time
import pytest
from decimal import Decimal

from src.delta_neutral.config import EngineConfig
from src.delta_neutral.exposure_calculator import compute
from src.delta_neutral.paper_engine import AutoApprover, PaperAttestor, PaperExecutor, build_paper_engine
from src.delta_neutral.plan_execution import PlanRunner
from src.delta_neutral.types import (
    ActionKind,
    AttestationRejected,
    ExecutionPartialFailure,
    ExecutionReport,
    InfeasibleStrategyError,
    StaleSnapshotError,
    TriggerState,
)


@pytest.fixture
def engine():
    return build_paper_engine(Decimal("10000"))


def _executor(engine):
    return engine.runner.executor


class HalfFillExecutor(PaperExecutor):
    """Confirms every action but fills half of it."""

    async def execute(self, action):
        report = await super().execute(action)
        return ExecutionReport(
            report.idempotency_key,
            success=True,
            filled_quantity=abs(action.quantity) / 2,
            fill_price=report.fill_price,
        )


# =============================================================================
# TEST: HAPPY PATH
# =============================================================================


@pytest.mark.unit
class TestExecutedCycle:

    @pytest.mark.asyncio
    async def test_first_cycle_builds_hedged_book(self, engine):
        report = await engine.run_cycle()

        assert report.outcome == "EXECUTED"
        assert report.decision.reason == "no baseline"
        assert report.proof is not None
        assert len(report.reports) == len(_executor(engine).executed)

        view = engine.ledger.view()
        assert view.get("lido", "stETH", ActionKind.STAKE).quantity == Decimal("4")
        assert view.get("binance", "ETH", ActionKind.PERP).quantity == Decimal("-4")

    @pytest.mark.asyncio
    async def test_executed_book_is_neutral(self, engine):
        await engine.run_cycle()

        now = time.time()
        snapshot = await engine.assembler.assemble(engine.ledger.view(), engine.config, now)
        exposure = compute(engine.ledger, snapshot, engine.config, now)
        assert exposure.is_neutral(engine.config.epsilon_usd)

    @pytest.mark.asyncio
    async def test_second_cycle_is_idle(self, engine):
        await engine.run_cycle()
        report = await engine.run_cycle()

        assert report.outcome == "IDLE"
        assert engine.trigger.current is TriggerState.IDLE
        assert engine.get_status()["plans_executed"] == 1


# =============================================================================
# TEST: FAILURE MODES
# =============================================================================


@pytest.mark.unit
class TestFailureModes:

    @pytest.mark.asyncio
    async def test_all_stale_emits_nothing(self, engine):
        for source in engine.assembler.sources:
            source.freeze_timestamps = True
        later = time.time() + 120

        with pytest.raises(StaleSnapshotError) as exc:
            await engine.run_cycle(later)

        assert exc.value.cycle_ts == later
        assert _executor(engine).executed == []
        assert engine.ledger.version == 0

    @pytest.mark.asyncio
    async def test_declined_plan_not_executed(self, engine):
        engine.approver = AutoApprover(approve=False)
        report = await engine.run_cycle()

        assert report.outcome == "DECLINED"
        assert report.plan_id is not None
        assert _executor(engine).executed == []
        assert engine.trigger.current is TriggerState.TRIGGERED

    @pytest.mark.asyncio
    async def test_rejected_plan_never_resubmitted(self, engine):
        attestor = PaperAttestor(reject_all=True)
        engine.attestor = attestor
        now = time.time()

        with pytest.raises(AttestationRejected) as first:
            await engine.run_cycle(now)
        with pytest.raises(AttestationRejected) as second:
            await engine.run_cycle(now)

        assert first.value.plan_id == second.value.plan_id
        assert len(attestor.seen) == 1
        assert _executor(engine).executed == []
        assert engine.trigger.current is TriggerState.TRIGGERED

    @pytest.mark.asyncio
    async def test_partial_failure_resumed_in_cycle(self, engine):
        executor = _executor(engine)
        executor.fail_indices = {1}

        report = await engine.run_cycle()

        assert report.outcome == "EXECUTED"
        assert executor.attempts == len(executor.executed) + 1
        assert engine.ledger.version == len(executor.executed)
        assert len({a.idempotency_key for a in executor.executed}) == len(executor.executed)

    @pytest.mark.asyncio
    async def test_partial_failure_surfaces_after_retries(self):
        engine = build_paper_engine(
            Decimal("10000"), EngineConfig(epsilon_usd=Decimal("250"), max_resume_attempts=0)
        )
        _executor(engine).fail_indices = {1}

        with pytest.raises(ExecutionPartialFailure) as exc:
            await engine.run_cycle()

        assert exc.value.resume_index == 1
        assert engine.ledger.version == 1
        assert engine.trigger.current is TriggerState.TRIGGERED

    @pytest.mark.asyncio
    async def test_short_fill_not_resumed_in_cycle(self, engine):
        executor = HalfFillExecutor()
        engine.runner = PlanRunner(executor, engine.ledger, executor)

        with pytest.raises(ExecutionPartialFailure, match="short fill") as exc:
            await engine.run_cycle()

        assert not exc.value.resumable
        assert executor.attempts == 1
        assert engine.ledger.version == 1
        assert engine.trigger.current is TriggerState.TRIGGERED

    @pytest.mark.asyncio
    async def test_oversized_plan_rejected_before_execution(self):
        config = EngineConfig(
            epsilon_usd=Decimal("250"), interim_exposure_usd=Decimal("0"), max_plan_actions=5
        )
        engine = build_paper_engine(Decimal("10000"), config)

        with pytest.raises(InfeasibleStrategyError, match="more than 5 actions"):
            await engine.run_cycle()

        assert _executor(engine).executed == []
        assert engine.attestor.seen == []
        assert engine.ledger.version == 0
        assert engine.trigger.current is TriggerState.TRIGGERED


@pytest.mark.unit
class TestStatus:

    def test_status_fields(self, engine):
        status = engine.get_status()
        assert status["cycles"] == 0
        assert status["trigger_state"] == "IDLE"
        assert status["ledger_version"] == 0
