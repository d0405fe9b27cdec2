"""
Neutrality Monitor
==================
The "heartbeat" that runs engine evaluation cycles on a timer.

Runs a continuous loop that:
1. Calls DeltaNeutralEngine.run_cycle() every poll interval
2. Treats stale data and optimizer timeouts as transient (retry next tick)
3. Pauses on errors that need a human (infeasible / rejected plans)
4. Moves to ERROR after too many consecutive failures

The engine itself has no timers; this loop is the only place wall-clock
scheduling happens.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from src.delta_neutral.engine import CycleReport, DeltaNeutralEngine
from src.delta_neutral.types import (
    InfeasibleStrategyError,
    OptimizerTimeoutError,
    StaleSnapshotError,
)
from src.shared.system.logging import Logger


# =============================================================================
# CONFIGURATION
# =============================================================================


class MonitorState(Enum):
    """Current state of the neutrality monitor."""
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    ERROR = "ERROR"


@dataclass
class MonitorConfig:
    """Configuration for the neutrality monitor."""

    # Polling interval in milliseconds
    poll_interval_ms: int = 15_000

    # Maximum consecutive errors before giving up
    max_consecutive_errors: int = 3

    @classmethod
    def from_settings(cls, settings=None) -> "MonitorConfig":
        if settings is None:
            from config.settings import Settings as settings
        return cls(
            poll_interval_ms=settings.POLL_INTERVAL_MS,
            max_consecutive_errors=settings.MAX_CONSECUTIVE_ERRORS,
        )


TRANSIENT_ERRORS = (StaleSnapshotError, OptimizerTimeoutError)


# =============================================================================
# NEUTRALITY MONITOR
# =============================================================================


class NeutralityMonitor:
    """
    Background task that keeps the portfolio delta-neutral.

    Example:
        >>> monitor = NeutralityMonitor(engine)
        >>> monitor.on_cycle = report_to_dashboard
        >>> await monitor.start()
    """

    def __init__(self, engine: DeltaNeutralEngine, config: Optional[MonitorConfig] = None):
        self.engine = engine
        self.config = config or MonitorConfig()

        # State
        self._state = MonitorState.IDLE
        self._task: Optional[asyncio.Task] = None
        self._consecutive_errors = 0
        self._last_report: Optional[CycleReport] = None

        # Callbacks
        self.on_cycle: Optional[Callable[[CycleReport], Awaitable[None]]] = None
        self.on_error: Optional[Callable[[Exception], Awaitable[None]]] = None

        # Statistics
        self._cycles_completed = 0
        self._cycles_failed = 0
        self._plans_executed = 0
        self._outcomes: List[str] = []

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def start(self) -> None:
        """Start the monitoring loop."""
        if self._state == MonitorState.RUNNING:
            Logger.warning("[MONITOR] Monitor already running")
            return

        Logger.info("[MONITOR] Neutrality Monitor starting...")
        self._state = MonitorState.RUNNING
        self._consecutive_errors = 0
        self._task = asyncio.create_task(self._monitor_loop())

    async def stop(self) -> None:
        """Stop the monitoring loop."""
        task, self._task = self._task, None
        self._state = MonitorState.IDLE
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        Logger.info("[MONITOR] Neutrality Monitor stopped")

    async def pause(self) -> None:
        """Pause monitoring (keeps loop running but skips cycles)."""
        self._state = MonitorState.PAUSED
        Logger.info("[MONITOR] Neutrality Monitor paused")

    async def resume(self) -> None:
        """Resume monitoring from paused state."""
        if self._state == MonitorState.PAUSED:
            self._state = MonitorState.RUNNING
            Logger.info("[MONITOR] Neutrality Monitor resumed")

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state == MonitorState.RUNNING

    # =========================================================================
    # MAIN LOOP
    # =========================================================================

    async def _monitor_loop(self) -> None:
        """Main loop - one cycle every poll_interval_ms."""
        poll_interval_sec = self.config.poll_interval_ms / 1000.0

        while self._state in (MonitorState.RUNNING, MonitorState.PAUSED):
            if self._state == MonitorState.RUNNING:
                await self.run_once()
            await asyncio.sleep(poll_interval_sec)

    async def run_once(self, now: Optional[float] = None) -> Optional[CycleReport]:
        """
        Run a single cycle with the monitor's error policy.

        Returns:
            The CycleReport, or None if the cycle failed
        """
        try:
            report = await self.engine.run_cycle(now)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            await self._handle_error(e)
            return None

        self._consecutive_errors = 0
        self._cycles_completed += 1
        self._last_report = report
        self._outcomes.append(report.outcome)
        if len(self._outcomes) > 100:
            self._outcomes = self._outcomes[-100:]
        if report.outcome == "EXECUTED":
            self._plans_executed += 1

        if self.on_cycle:
            await self.on_cycle(report)
        return report

    # =========================================================================
    # ERROR HANDLING
    # =========================================================================

    async def _handle_error(self, error: Exception) -> None:
        self._cycles_failed += 1

        if self.on_error:
            await self.on_error(error)

        if isinstance(error, TRANSIENT_ERRORS):
            Logger.warning(f"[MONITOR] Transient failure, retrying next tick: {error}")
            return

        if isinstance(error, InfeasibleStrategyError):
            Logger.warning(f"[MONITOR] Needs attention, pausing: {error}")
            self._state = MonitorState.PAUSED
            return

        self._consecutive_errors += 1
        Logger.error(f"[MONITOR] Cycle error #{self._consecutive_errors}: {error}")
        if self._consecutive_errors >= self.config.max_consecutive_errors:
            Logger.warning(
                f"[MONITOR] Too many errors ({self._consecutive_errors}), stopping cycles"
            )
            self._state = MonitorState.ERROR

    # =========================================================================
    # STATISTICS
    # =========================================================================

    def get_last_report(self) -> Optional[CycleReport]:
        return self._last_report

    def get_stats(self) -> dict:
        return {
            "state": self._state.value,
            "cycles_completed": self._cycles_completed,
            "cycles_failed": self._cycles_failed,
            "plans_executed": self._plans_executed,
            "consecutive_errors": self._consecutive_errors,
            "recent_outcomes": list(self._outcomes[-10:]),
        }
