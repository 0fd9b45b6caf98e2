"""binwatch environment configuration.

Environment variables:
    BINWATCH_INACTIVITY_THRESHOLD: seconds without output before a live
        process counts as stalled
        - default 30.0, minimum 0.1

    BINWATCH_POLL_INTERVAL: watchdog poll cadence in seconds
        - default 1.0, clamped to 0.01-60
        - the runner further caps it at threshold / 10

    BINWATCH_DRAIN_TIMEOUT: how long cleanup waits for the output pump
        - default 1.0, clamped to 0-60
        - lines still unread after this are dropped

    BINWATCH_TERM_TIMEOUT: grace period after SIGTERM / CTRL_BREAK_EVENT
        - default 2.0

    BINWATCH_KILL_TIMEOUT: wait after SIGKILL before giving up
        - default 1.0

    BINWATCH_LOG_DEBUG: debug logging
        - true/1/yes = on (DEBUG logs written to a temp file)
        - false/0/no = off (default, INFO logs to stderr)

    BINWATCH_SIGINT_DOUBLE_TAP_WINDOW: double Ctrl+C window in seconds
        - default 1.0, clamped to 0.1-10
        - a second Ctrl+C within the window forces exit
"""

from __future__ import annotations

import math
import os
import tempfile
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path

__all__ = ["Config", "load_config", "get_config", "reload_config", "with_debug_logging"]

DEFAULT_INACTIVITY_THRESHOLD = 30.0
DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_DRAIN_TIMEOUT = 1.0
DEFAULT_TERM_TIMEOUT = 2.0
DEFAULT_KILL_TIMEOUT = 1.0
DEFAULT_DOUBLE_TAP_WINDOW = 1.0


def _parse_bool(value: str | None, default: bool = False) -> bool:
    """Parse a boolean environment variable."""
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _parse_seconds(
    value: str | None,
    default: float,
    minimum: float = 0.0,
    maximum: float | None = None,
) -> float:
    """Parse a duration in seconds, clamped; invalid values use the default."""
    if not value or not value.strip():
        return default
    try:
        seconds = float(value)
    except ValueError:
        return default
    if not math.isfinite(seconds):
        return default
    seconds = max(minimum, seconds)
    if maximum is not None:
        seconds = min(seconds, maximum)
    return seconds


@dataclass
class Config:
    """binwatch configuration.

    Attributes:
        inactivity_threshold: Default stall threshold (seconds)
        poll_interval: Watchdog poll cadence (seconds)
        drain_timeout: Bounded wait for the output pump at cleanup (seconds)
        term_timeout: Grace period after the graceful signal (seconds)
        kill_timeout: Wait after the forced kill (seconds)
        log_debug: Debug logging to a temp file
        log_file: Log file path (set automatically when log_debug=True)
        sigint_double_tap_window: Double Ctrl+C window (seconds)
    """

    inactivity_threshold: float = DEFAULT_INACTIVITY_THRESHOLD
    poll_interval: float = DEFAULT_POLL_INTERVAL
    drain_timeout: float = DEFAULT_DRAIN_TIMEOUT
    term_timeout: float = DEFAULT_TERM_TIMEOUT
    kill_timeout: float = DEFAULT_KILL_TIMEOUT
    log_debug: bool = False
    log_file: str | None = None
    sigint_double_tap_window: float = DEFAULT_DOUBLE_TAP_WINDOW

    def __repr__(self) -> str:
        return (
            f"Config(inactivity_threshold={self.inactivity_threshold}, "
            f"poll_interval={self.poll_interval}, "
            f"drain_timeout={self.drain_timeout}, "
            f"term_timeout={self.term_timeout}, "
            f"kill_timeout={self.kill_timeout}, "
            f"log_debug={self.log_debug}, "
            f"log_file={self.log_file}, "
            f"sigint_double_tap_window={self.sigint_double_tap_window})"
        )


def _generate_log_file_path() -> str:
    """Build a timestamped log file path under the system temp directory."""
    log_dir = Path(tempfile.gettempdir()) / "binwatch"
    log_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    log_file = log_dir / f"binwatch_debug_{timestamp}.log"

    return str(log_file.resolve())


def load_config() -> Config:
    """Load configuration from environment variables."""
    log_debug = _parse_bool(os.environ.get("BINWATCH_LOG_DEBUG"), default=False)
    log_file = _generate_log_file_path() if log_debug else None

    return Config(
        inactivity_threshold=_parse_seconds(
            os.environ.get("BINWATCH_INACTIVITY_THRESHOLD"),
            DEFAULT_INACTIVITY_THRESHOLD,
            minimum=0.1,
        ),
        poll_interval=_parse_seconds(
            os.environ.get("BINWATCH_POLL_INTERVAL"),
            DEFAULT_POLL_INTERVAL,
            minimum=0.01,
            maximum=60.0,
        ),
        drain_timeout=_parse_seconds(
            os.environ.get("BINWATCH_DRAIN_TIMEOUT"),
            DEFAULT_DRAIN_TIMEOUT,
            maximum=60.0,
        ),
        term_timeout=_parse_seconds(
            os.environ.get("BINWATCH_TERM_TIMEOUT"),
            DEFAULT_TERM_TIMEOUT,
        ),
        kill_timeout=_parse_seconds(
            os.environ.get("BINWATCH_KILL_TIMEOUT"),
            DEFAULT_KILL_TIMEOUT,
        ),
        log_debug=log_debug,
        log_file=log_file,
        sigint_double_tap_window=_parse_seconds(
            os.environ.get("BINWATCH_SIGINT_DOUBLE_TAP_WINDOW"),
            DEFAULT_DOUBLE_TAP_WINDOW,
            minimum=0.1,
            maximum=10.0,
        ),
    )


# Global config instance (lazily loaded)
_config: Config | None = None


def get_config() -> Config:
    """Return the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration from the environment (used by tests)."""
    global _config
    _config = load_config()
    return _config


def with_debug_logging(config: Config) -> Config:
    """Return a copy of ``config`` with file-based debug logging switched on."""
    if config.log_debug and config.log_file:
        return config
    return replace(config, log_debug=True, log_file=_generate_log_file_path())
