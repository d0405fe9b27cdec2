"""
Engine Configuration
====================
Explicit configuration value handed to every component call.

Components never read ``Settings`` themselves; the caller builds one
``EngineConfig`` (usually via ``EngineConfig.from_settings()``) and passes
it down, so a cycle can be reproduced in tests from its inputs alone.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from src.delta_neutral.types import DriftMode


@dataclass(frozen=True, slots=True)
class EngineConfig:
    """Process-wide engine parameters."""

    # Neutrality tolerance per underlying (USD)
    epsilon_usd: Decimal = Decimal("25")

    # Hard leverage cap on top of user and venue limits
    max_leverage: Decimal = Decimal("5")

    # Quotes older than this are unusable
    max_snapshot_age_sec: float = 30.0

    # Per-source fetch timeout when assembling a snapshot
    snapshot_timeout_sec: float = 5.0

    # Rebalance trigger
    drift_mode: DriftMode = DriftMode.PER_ASSET
    drift_threshold_pct: Decimal = Decimal("5.0")
    max_staleness_sec: float = 3600.0
    # Minimum drift for a stale baseline to fire (0 = staleness alone fires)
    stale_drift_floor_pct: Decimal = Decimal("0")

    # Optimizer
    optimizer_budget_sec: float = 2.0
    holding_horizon_hours: Decimal = Decimal("168")
    cost_tie_tolerance_usd: Decimal = Decimal("0.5")
    max_hedge_split: int = 2
    slippage_coefficient: Decimal = Decimal("0.1")

    # Plan emission
    # |exposure| allowed while a plan executes: max(|pre-plan|, epsilon, this)
    interim_exposure_usd: Decimal = Decimal("5000")
    max_plan_actions: int = 64

    # Execution
    max_resume_attempts: int = 1

    def __post_init__(self):
        if self.epsilon_usd < 0:
            raise ValueError(f"Invalid epsilon {self.epsilon_usd}: must be >= 0")
        if self.stale_drift_floor_pct < 0:
            raise ValueError(
                f"Invalid stale drift floor {self.stale_drift_floor_pct}: must be >= 0"
            )
        if self.interim_exposure_usd < 0:
            raise ValueError(
                f"Invalid interim exposure {self.interim_exposure_usd}: must be >= 0"
            )
        if self.max_plan_actions < 1:
            raise ValueError(f"Invalid plan length cap {self.max_plan_actions}: must be >= 1")
        if self.max_leverage < 1:
            raise ValueError(f"Invalid max leverage {self.max_leverage}: must be >= 1")
        if self.max_hedge_split < 1:
            raise ValueError(f"Invalid hedge split {self.max_hedge_split}: must be >= 1")

    @classmethod
    def from_settings(cls, settings=None) -> "EngineConfig":
        """Build from the env-backed Settings class."""
        if settings is None:
            from config.settings import Settings as settings

        return cls(
            epsilon_usd=Decimal(str(settings.EPSILON_USD)),
            max_leverage=Decimal(str(settings.MAX_LEVERAGE)),
            max_snapshot_age_sec=float(settings.MAX_SNAPSHOT_AGE_SEC),
            snapshot_timeout_sec=float(settings.SNAPSHOT_TIMEOUT_SEC),
            drift_mode=DriftMode(settings.DRIFT_MODE),
            drift_threshold_pct=Decimal(str(settings.DRIFT_THRESHOLD_PCT)),
            max_staleness_sec=float(settings.MAX_STALENESS_SEC),
            stale_drift_floor_pct=Decimal(str(settings.STALE_DRIFT_FLOOR_PCT)),
            optimizer_budget_sec=float(settings.OPTIMIZER_BUDGET_SEC),
            holding_horizon_hours=Decimal(str(settings.HOLDING_HORIZON_HOURS)),
            cost_tie_tolerance_usd=Decimal(str(settings.COST_TIE_TOLERANCE_USD)),
            max_hedge_split=int(settings.MAX_HEDGE_SPLIT),
            slippage_coefficient=Decimal(str(settings.SLIPPAGE_COEFFICIENT)),
            interim_exposure_usd=Decimal(str(settings.INTERIM_EXPOSURE_USD)),
            max_plan_actions=int(settings.MAX_PLAN_ACTIONS),
            max_resume_attempts=int(settings.MAX_RESUME_ATTEMPTS),
        )
