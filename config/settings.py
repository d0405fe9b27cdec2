import os
from dotenv import load_dotenv

# Load Environment Variables from project root .env
env_path = os.path.join(os.path.dirname(__file__), "../.env")
load_dotenv(env_path)


class Settings:
    # ═══════════════════════════════════════════════════════════════════
    # CHILL PM CONFIGURATION (env-driven, see .env.example)
    # ═══════════════════════════════════════════════════════════════════

    # --- Console ---
    SILENT_MODE = os.getenv("SILENT_MODE", "false").lower() == "true"
    ENGINE_NAME = os.getenv("ENGINE_NAME", "CHILL")

    # Paths
    LOG_DIR = os.path.abspath(
        os.path.join(os.path.dirname(__file__), "..", os.getenv("LOG_DIR", "logs"))
    )

    # ═══════════════════════════════════════════════════════════════════
    # NEUTRALITY
    # ═══════════════════════════════════════════════════════════════════
    EPSILON_USD = os.getenv("EPSILON_USD", "25")  # |net exposure| tolerance per asset
    MAX_LEVERAGE = os.getenv("MAX_LEVERAGE", "5")  # Hard cap, venues may offer less

    # ═══════════════════════════════════════════════════════════════════
    # MARKET DATA
    # ═══════════════════════════════════════════════════════════════════
    MAX_SNAPSHOT_AGE_SEC = float(os.getenv("MAX_SNAPSHOT_AGE_SEC", "30"))
    SNAPSHOT_TIMEOUT_SEC = float(os.getenv("SNAPSHOT_TIMEOUT_SEC", "5"))

    # ═══════════════════════════════════════════════════════════════════
    # REBALANCE TRIGGER
    # ═══════════════════════════════════════════════════════════════════
    DRIFT_MODE = os.getenv("DRIFT_MODE", "per_asset")  # per_asset | aggregate
    DRIFT_THRESHOLD_PCT = os.getenv("DRIFT_THRESHOLD_PCT", "5.0")
    MAX_STALENESS_SEC = float(os.getenv("MAX_STALENESS_SEC", "3600"))
    STALE_DRIFT_FLOOR_PCT = os.getenv("STALE_DRIFT_FLOOR_PCT", "0")  # 0 = staleness alone fires

    # ═══════════════════════════════════════════════════════════════════
    # OPTIMIZER
    # ═══════════════════════════════════════════════════════════════════
    OPTIMIZER_BUDGET_SEC = float(os.getenv("OPTIMIZER_BUDGET_SEC", "2.0"))
    HOLDING_HORIZON_HOURS = os.getenv("HOLDING_HORIZON_HOURS", "168")  # 1 week
    COST_TIE_TOLERANCE_USD = os.getenv("COST_TIE_TOLERANCE_USD", "0.5")
    MAX_HEDGE_SPLIT = int(os.getenv("MAX_HEDGE_SPLIT", "2"))
    SLIPPAGE_COEFFICIENT = os.getenv("SLIPPAGE_COEFFICIENT", "0.1")

    # ═══════════════════════════════════════════════════════════════════
    # PLAN EMISSION
    # ═══════════════════════════════════════════════════════════════════
    INTERIM_EXPOSURE_USD = os.getenv("INTERIM_EXPOSURE_USD", "5000")  # 0 = tranche at epsilon
    MAX_PLAN_ACTIONS = int(os.getenv("MAX_PLAN_ACTIONS", "64"))

    # ═══════════════════════════════════════════════════════════════════
    # EXECUTION
    # ═══════════════════════════════════════════════════════════════════
    POLL_INTERVAL_MS = int(os.getenv("POLL_INTERVAL_MS", "15000"))
    MAX_RESUME_ATTEMPTS = int(os.getenv("MAX_RESUME_ATTEMPTS", "1"))
    MAX_CONSECUTIVE_ERRORS = int(os.getenv("MAX_CONSECUTIVE_ERRORS", "3"))
    PAPER_MODE = os.getenv("PAPER_MODE", "true").lower() == "true"

    # Collaborator endpoints (attestation task runner, see schemas.PlanPayload)
    ATTESTATION_HOST = os.getenv("ATTESTATION_HOST", "127.0.0.1")
    ATTESTATION_PORT = int(os.getenv("ATTESTATION_PORT", "4003"))
    ATTESTATION_TASK_DEFINITION_ID = os.getenv("ATTESTATION_TASK_DEFINITION_ID", "0")
