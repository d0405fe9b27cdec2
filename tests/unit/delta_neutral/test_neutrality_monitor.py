"""
Neutrality Monitor Unit Tests
=============================
Tests for the polling loop's error policy and lifecycle.
"""

import asyncio
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from src.delta_neutral.neutrality_monitor import MonitorConfig, MonitorState, NeutralityMonitor
from src.delta_neutral.paper_engine import build_paper_engine
from src.delta_neutral.types import (
    AttestationRejected,
    InfeasibleStrategyError,
    OptimizerTimeoutError,
    StaleSnapshotError,
)


def _engine(*outcomes):
    engine = MagicMock()
    engine.run_cycle = AsyncMock(side_effect=list(outcomes))
    return engine


def _report(outcome="IDLE"):
    report = MagicMock()
    report.outcome = outcome
    return report


# =============================================================================
# TEST: ERROR POLICY
# =============================================================================


@pytest.mark.unit
class TestErrorPolicy:

    @pytest.mark.asyncio
    async def test_success_recorded(self):
        monitor = NeutralityMonitor(_engine(_report("EXECUTED")))
        report = await monitor.run_once()

        assert report.outcome == "EXECUTED"
        assert monitor.get_last_report() is report
        assert monitor.get_stats()["plans_executed"] == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        StaleSnapshotError("old quotes"),
        OptimizerTimeoutError("slow"),
    ])
    async def test_transient_errors_keep_running(self, error):
        monitor = NeutralityMonitor(_engine(error))
        monitor._state = MonitorState.RUNNING

        assert await monitor.run_once() is None
        assert monitor.state is MonitorState.RUNNING
        assert monitor.get_stats()["consecutive_errors"] == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        InfeasibleStrategyError("nothing fits"),
        AttestationRejected("bad plan", plan_id="p1"),
    ])
    async def test_infeasible_pauses(self, error):
        monitor = NeutralityMonitor(_engine(error))
        monitor._state = MonitorState.RUNNING

        await monitor.run_once()
        assert monitor.state is MonitorState.PAUSED

    @pytest.mark.asyncio
    async def test_repeated_errors_stop_cycles(self):
        monitor = NeutralityMonitor(
            _engine(RuntimeError("a"), RuntimeError("b"), RuntimeError("c")),
            MonitorConfig(max_consecutive_errors=3),
        )
        monitor._state = MonitorState.RUNNING

        for _ in range(3):
            await monitor.run_once()

        assert monitor.state is MonitorState.ERROR
        assert monitor.get_stats()["cycles_failed"] == 3

    @pytest.mark.asyncio
    async def test_error_callback(self):
        error = StaleSnapshotError("old quotes")
        monitor = NeutralityMonitor(_engine(error))
        monitor.on_error = AsyncMock()

        await monitor.run_once()
        monitor.on_error.assert_awaited_once_with(error)


# =============================================================================
# TEST: LIFECYCLE
# =============================================================================


@pytest.mark.unit
class TestLifecycle:

    @pytest.mark.asyncio
    async def test_start_stop(self):
        engine = MagicMock()
        engine.run_cycle = AsyncMock(return_value=_report())
        monitor = NeutralityMonitor(engine, MonitorConfig(poll_interval_ms=10))

        await monitor.start()
        assert monitor.is_running
        await asyncio.sleep(0.05)
        await monitor.stop()

        assert monitor.state is MonitorState.IDLE
        assert engine.run_cycle.await_count >= 1

    @pytest.mark.asyncio
    async def test_pause_resume(self):
        monitor = NeutralityMonitor(_engine())
        monitor._state = MonitorState.RUNNING

        await monitor.pause()
        assert monitor.state is MonitorState.PAUSED
        await monitor.resume()
        assert monitor.is_running

    def test_config_from_settings(self):
        settings = MagicMock(POLL_INTERVAL_MS=500, MAX_CONSECUTIVE_ERRORS=5)
        config = MonitorConfig.from_settings(settings)
        assert config.poll_interval_ms == 500
        assert config.max_consecutive_errors == 5

    @pytest.mark.asyncio
    async def test_drives_paper_engine(self):
        monitor = NeutralityMonitor(build_paper_engine(Decimal("10000")))

        first = await monitor.run_once()
        second = await monitor.run_once()

        assert (first.outcome, second.outcome) == ("EXECUTED", "IDLE")
        assert monitor.get_stats()["recent_outcomes"] == ["EXECUTED", "IDLE"]
