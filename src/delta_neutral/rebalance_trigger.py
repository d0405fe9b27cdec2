"""
Rebalance Trigger
=================
Explicit state machine deciding when drift justifies a new optimizer run.

    IDLE ──(drift > threshold | stale baseline, drift >= floor)──▶ TRIGGERED
    TRIGGERED ──(begin_evaluation / evaluate)──▶ EVALUATING
    EVALUATING ──(complete: plan emitted)──▶ IDLE
    EVALUATING ──(fail / defer)──▶ TRIGGERED
    any ──(fail: exposure-affecting error)──▶ TRIGGERED

No timers: the caller passes ``now`` so every transition is reproducible.
An unresolved drift is never forgotten; only ``complete()`` returns the
trigger to IDLE.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Callable, Optional, TypeVar

from src.delta_neutral.config import EngineConfig
from src.delta_neutral.exposure_calculator import drift_between
from src.delta_neutral.types import ExposureVector, RebalanceState, TriggerState, ZERO
from src.shared.system.logging import Logger


T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class TriggerDecision:
    """Result of one observation."""

    state: TriggerState
    drift_pct: Decimal
    elapsed_sec: Optional[float]
    reason: str

    @property
    def triggered(self) -> bool:
        return self.state is TriggerState.TRIGGERED


class InvalidTransition(RuntimeError):
    """A transition was requested from a state that does not allow it."""


class RebalanceTrigger:
    """
    Sole owner and writer of RebalanceState.

    Example:
        >>> trigger = RebalanceTrigger()
        >>> decision = trigger.observe(exposure, now, config)
        >>> if decision.triggered:
        ...     candidate = trigger.evaluate(lambda: optimize(...))
        ...     trigger.complete(candidate.projected_exposure, now)
    """

    def __init__(self, state: Optional[RebalanceState] = None):
        self._state = state or RebalanceState()

    @property
    def state(self) -> RebalanceState:
        """Copy of the current memory (callers cannot mutate it)."""
        return replace(self._state)

    @property
    def current(self) -> TriggerState:
        return self._state.state

    def _move(self, to: TriggerState, reason: str) -> None:
        if self._state.state is not to:
            Logger.info(f"[TRIGGER] {self._state.state.value} → {to.value}: {reason}")
        self._state.state = to
        self._state.last_reason = reason

    # =========================================================================
    # OBSERVATION
    # =========================================================================

    def observe(self, exposure: ExposureVector, now: float, config: EngineConfig) -> TriggerDecision:
        """
        Compare fresh exposure against the recorded baseline.

        A baseline older than ``max_staleness_sec`` fires on its own when
        ``stale_drift_floor_pct`` is 0 (the default). A positive floor makes
        staleness fire only once drift has also reached the floor.

        Raises:
            InvalidTransition: Called while an evaluation is in progress
        """
        s = self._state
        if s.state is TriggerState.EVALUATING:
            raise InvalidTransition("observe() while EVALUATING")

        if s.last_exposure is not None:
            step = drift_between(exposure, s.last_exposure, config.drift_mode)
            s.cumulative_drift_pct += step
        s.last_exposure = exposure

        elapsed = None if s.last_rebalance_ts is None else now - s.last_rebalance_ts

        if s.baseline_exposure is None:
            drift = ZERO
            s.last_drift_pct = drift
            if s.state is TriggerState.IDLE:
                self._move(TriggerState.TRIGGERED, "no baseline")
            return TriggerDecision(s.state, drift, elapsed, s.last_reason)

        drift = drift_between(exposure, s.baseline_exposure, config.drift_mode)
        s.last_drift_pct = drift

        if s.state is TriggerState.TRIGGERED:
            return TriggerDecision(s.state, drift, elapsed, s.last_reason or "unresolved")

        if drift > config.drift_threshold_pct:
            self._move(
                TriggerState.TRIGGERED,
                f"drift {drift:.2f}% > {config.drift_threshold_pct}%",
            )
        elif (
            elapsed is not None
            and elapsed > config.max_staleness_sec
            and drift >= config.stale_drift_floor_pct
        ):
            self._move(
                TriggerState.TRIGGERED,
                f"baseline {elapsed:.0f}s old with drift {drift:.2f}%",
            )
        else:
            self._state.last_reason = f"drift {drift:.2f}% within bounds"

        return TriggerDecision(s.state, drift, elapsed, s.last_reason)

    # =========================================================================
    # EVALUATION
    # =========================================================================

    def begin_evaluation(self) -> None:
        if self._state.state is not TriggerState.TRIGGERED:
            raise InvalidTransition(f"cannot evaluate from {self._state.state.value}")
        self._move(TriggerState.EVALUATING, "optimizer invoked")

    def evaluate(self, search: Callable[[], T]) -> T:
        """
        TRIGGERED → EVALUATING and run ``search``.

        Any exception returns the trigger to TRIGGERED and is re-raised.
        """
        self.begin_evaluation()
        try:
            return search()
        except Exception as e:
            self.fail(e)
            raise

    def complete(self, baseline: ExposureVector, now: float) -> None:
        """EVALUATING → IDLE once a plan has been emitted."""
        if self._state.state is not TriggerState.EVALUATING:
            raise InvalidTransition(f"cannot complete from {self._state.state.value}")
        s = self._state
        s.baseline_exposure = baseline
        s.last_exposure = baseline
        s.last_rebalance_ts = now
        s.cumulative_drift_pct = ZERO
        s.last_drift_pct = ZERO
        s.last_error = None
        self._move(TriggerState.IDLE, "plan emitted")

    def fail(self, error: BaseException) -> None:
        """Record an exposure-affecting failure and stay / return TRIGGERED."""
        self._state.last_error = error
        self._move(TriggerState.TRIGGERED, f"failure: {error}")

    def defer(self, reason: str) -> None:
        """EVALUATING → TRIGGERED without an error (e.g. user declined)."""
        if self._state.state is not TriggerState.EVALUATING:
            raise InvalidTransition(f"cannot defer from {self._state.state.value}")
        self._move(TriggerState.TRIGGERED, reason)
