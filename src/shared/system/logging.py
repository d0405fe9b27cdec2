"""
Centralized Logger with Rich Console
====================================
Static facade used by every engine component.

Usage:
    from src.shared.system.logging import Logger

    Logger.info("[OPTIMIZER] Searching 12 combinations")
    Logger.success("[EMITTER] Plan emitted")
    Logger.warning("[SNAPSHOT] binance unreachable")
    Logger.error("[ENGINE] Cycle failed")
    Logger.section("Evaluation Cycle")
"""

import os
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler

from rich.console import Console
from rich.text import Text

from config.settings import Settings


# =============================================================================
# FILE LOGGER (per-run session file, created on first write)
# =============================================================================

_run_id = datetime.now().strftime("%Y%m%d_%H%M%S")

file_logger = logging.getLogger("ChillPM")
file_logger.setLevel(logging.DEBUG)
file_logger.propagate = False


def _ensure_file_handler() -> None:
    """Attach the rotating handler lazily so imports never touch the disk."""
    if file_logger.handlers:
        return
    os.makedirs(Settings.LOG_DIR, exist_ok=True)
    log_file = os.path.join(Settings.LOG_DIR, f"chill_{_run_id}.log")
    handler = RotatingFileHandler(
        log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
    )
    handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
        )
    )
    file_logger.addHandler(handler)


# =============================================================================
# SOURCE ICONS (for visual scanning)
# =============================================================================

SOURCE_ICONS = {
    "SYSTEM": "🛸",
    "ENGINE": "⚖️",
    "SNAPSHOT": "📸",
    "YIELD": "🌾",
    "LEDGER": "📒",
    "EXPOSURE": "🧭",
    "OPTIMIZER": "🧠",
    "TRIGGER": "⏱️",
    "EMITTER": "📋",
    "EXEC": "💰",
    "ATTEST": "🔏",
    "MONITOR": "🫀",
    "PAPER": "📝",
}

_console = Console()

# Level colors for Rich
LEVEL_STYLES = {
    "INFO": "cyan",
    "SUCCESS": "green bold",
    "WARNING": "yellow",
    "ERROR": "red bold",
    "DEBUG": "dim",
    "CRITICAL": "red bold reverse",
    "SECTION": "magenta bold",
}


# =============================================================================
# LOGGER CLASS
# =============================================================================


class Logger:
    """
    Centralized logger with Rich console output.

    Features:
    - Color-coded console output
    - Per-run file log with rotation
    - Source-based icon prefixes parsed from a leading [TAG]
    """

    _silent_mode = False

    @staticmethod
    def _timestamp() -> str:
        """High-precision timestamp (HH:MM:SS.ms)."""
        now = datetime.now()
        return f"{now.strftime('%H:%M:%S')}.{now.microsecond // 1000:03d}"

    @staticmethod
    def _parse_source(message: str) -> tuple:
        """Extract [SOURCE] tag from message if present."""
        stripped = message.strip()
        if stripped.startswith("[") and "]" in stripped:
            tag_end = stripped.index("]")
            source = stripped[1:tag_end].upper()
            if 0 < len(source) < 15:
                return source, stripped[tag_end + 1 :].strip()
        return "SYSTEM", message

    @staticmethod
    def _format_console(level: str, message: str, source: str) -> None:
        if Logger._silent_mode or Settings.SILENT_MODE:
            return

        icon = SOURCE_ICONS.get(source, "")
        style = LEVEL_STYLES.get(level, "white")

        line = Text()
        line.append(f"{Logger._timestamp()} ", style="dim")
        line.append(f"| {level[:8].ljust(8)} ", style=style)
        line.append(f"| {source[:10].ljust(10)} | ", style="dim")
        line.append(f"{icon} {message}" if icon else message)
        _console.print(line)

    @staticmethod
    def _log_to_file(level: int, message: str, source: str = "") -> None:
        _ensure_file_handler()
        file_logger.log(level, f"[{source}] {message}" if source else message)

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    @staticmethod
    def info(message: str, icon: str = "") -> None:
        source, msg = Logger._parse_source(message)
        if icon:
            msg = f"{icon} {msg}"
        Logger._format_console("INFO", msg, source)
        Logger._log_to_file(logging.INFO, msg, source)

    @staticmethod
    def success(message: str) -> None:
        source, msg = Logger._parse_source(message)
        Logger._format_console("SUCCESS", msg, source)
        Logger._log_to_file(logging.INFO, f"✅ {msg}", source)

    @staticmethod
    def warning(message: str) -> None:
        source, msg = Logger._parse_source(message)
        Logger._format_console("WARNING", msg, source)
        Logger._log_to_file(logging.WARNING, msg, source)

    @staticmethod
    def error(message: str) -> None:
        source, msg = Logger._parse_source(message)
        Logger._format_console("ERROR", msg, source)
        Logger._log_to_file(logging.ERROR, msg, source)

    @staticmethod
    def debug(message: str) -> None:
        source, msg = Logger._parse_source(message)
        Logger._log_to_file(logging.DEBUG, msg, source)

    @staticmethod
    def critical(message: str) -> None:
        source, msg = Logger._parse_source(message)
        Logger._format_console("CRITICAL", f"🛑 {msg}", source)
        Logger._log_to_file(logging.CRITICAL, f"🛑 {msg}", source)

    @staticmethod
    def section(title: str) -> None:
        """Print a section header."""
        if not (Logger._silent_mode or Settings.SILENT_MODE):
            _console.print()
            _console.rule(f"[bold magenta]{title}[/]", style="dim")
        Logger._log_to_file(logging.INFO, f"=== {title} ===", "SYSTEM")

    @staticmethod
    def set_silent(silent: bool) -> None:
        """Enable/disable console output."""
        Logger._silent_mode = silent
