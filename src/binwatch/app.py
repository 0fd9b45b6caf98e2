"""binwatch command-line entry point.

Runs one binary under the inactivity watchdog with signal-safe shutdown.

Usage:
    binwatch [--prefix P] [--threshold S] [--poll-interval S]
             [--drain-timeout S] [--log-debug] -- EXECUTABLE [ARGS...]

Exit status:
    child's exit code on normal completion (128 + N when killed by signal N),
    124 on stall, 127 when the binary cannot be launched, 130 when
    interrupted by SIGINT/SIGTERM.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import math
import os
import sys
from collections.abc import Sequence

from . import __version__
from .config import Config, get_config, with_debug_logging
from .errors import LaunchError, StallError
from .registry import RunRegistry
from .runtime import BinaryRunner
from .signal_manager import SignalManager

__all__ = ["configure_logging", "build_parser", "run_command", "main"]

logger = logging.getLogger(__name__)

EXIT_STALLED = 124
EXIT_LAUNCH_FAILED = 127
EXIT_INTERRUPTED = 130

# After a forced kill, how long run_command waits for cleanup before returning
FORCE_EXIT_GRACE = 0.5

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(config: Config) -> None:
    """Send binwatch logs to stderr (INFO) or to a temp file (DEBUG)."""
    log_handlers: list[logging.Handler] = []

    if config.log_debug and config.log_file:
        file_handler = logging.FileHandler(config.log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(file_handler)
        log_level = logging.DEBUG
    else:
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        log_handlers.append(stderr_handler)
        log_level = logging.INFO

    # Root logger (third-party libraries) stays at WARNING
    logging.basicConfig(level=logging.WARNING, handlers=log_handlers, force=True)
    logging.getLogger("binwatch").setLevel(log_level)


def _seconds(value: str, *, allow_zero: bool = False) -> float:
    try:
        seconds = float(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid number of seconds: {value!r}") from None
    if not math.isfinite(seconds) or seconds < 0 or (seconds == 0 and not allow_zero):
        bound = "non-negative" if allow_zero else "positive"
        raise argparse.ArgumentTypeError(f"must be a {bound} finite number, got {value!r}")
    return seconds


def positive_seconds(value: str) -> float:
    """argparse type for durations that must be greater than zero."""
    return _seconds(value)


def non_negative_seconds(value: str) -> float:
    """argparse type for durations where zero is allowed."""
    return _seconds(value, allow_zero=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="binwatch",
        description="Run a binary, stream its output and kill it if it goes silent.",
    )
    parser.add_argument("--prefix", default=None, help="Log prefix (default: executable name)")
    parser.add_argument(
        "--threshold",
        type=positive_seconds,
        default=None,
        help="Seconds without output before the process is killed (default: 30)",
    )
    parser.add_argument(
        "--poll-interval", type=positive_seconds, default=None, help="Watchdog poll cadence"
    )
    parser.add_argument(
        "--drain-timeout", type=non_negative_seconds, default=None, help="Output pump shutdown wait"
    )
    parser.add_argument("--log-debug", action="store_true", help="Write DEBUG logs to a temp file")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Executable and its arguments")
    return parser


def exit_status(exit_code: int) -> int:
    """Map a child exit code to a shell exit status."""
    if exit_code < 0:
        return 128 - exit_code
    return exit_code


async def run_command(
    executable: str,
    args: Sequence[str],
    *,
    prefix: str | None = None,
    threshold: float | None = None,
    poll_interval: float | None = None,
    drain_timeout: float | None = None,
    config: Config | None = None,
) -> int:
    """Supervise one execution and return the process exit status to use."""
    config = config or get_config()
    prefix = prefix or os.path.basename(executable) or executable
    runner = BinaryRunner(
        executable,
        prefix,
        poll_interval=poll_interval,
        drain_timeout=drain_timeout,
        config=config,
    )

    registry = RunRegistry()
    force_exit = asyncio.Event()

    def on_shutdown() -> None:
        # Double Ctrl+C: skip the graceful termination grace period
        if signal_manager.is_force_exit:
            count = runner.force_kill()
            logger.warning(f"Force exit requested, killed {count} process(es)")
            force_exit.set()

    signal_manager = SignalManager(
        registry,
        double_tap_window=config.sigint_double_tap_window,
        on_shutdown=on_shutdown,
    )
    await signal_manager.start()

    run_id = registry.generate_run_id()
    task = asyncio.create_task(runner.execute(list(args), threshold), name=f"binwatch-run-{prefix}")
    registry.register(run_id, prefix, task)
    force_watcher = asyncio.create_task(force_exit.wait(), name="force-exit-watcher")
    try:
        done, _ = await asyncio.wait({task, force_watcher}, return_when=asyncio.FIRST_COMPLETED)
        if task not in done:
            await asyncio.wait({task}, timeout=FORCE_EXIT_GRACE)
            if not task.done():
                logger.warning(f"{prefix} cleanup still running, exiting anyway")
                return EXIT_INTERRUPTED
        result = task.result()
    except LaunchError as e:
        logger.error(str(e))
        return EXIT_LAUNCH_FAILED
    except StallError as e:
        logger.error(str(e))
        return EXIT_STALLED
    except asyncio.CancelledError:
        if not task.done():
            # run_command itself was cancelled
            task.cancel()
            raise
        logger.warning(f"{prefix} interrupted by signal")
        return EXIT_INTERRUPTED
    finally:
        force_watcher.cancel()
        registry.unregister(run_id)
        await signal_manager.stop()

    return exit_status(result.exit_code)


def main(argv: Sequence[str] | None = None) -> int:
    """Main entry point."""
    parser = build_parser()
    ns = parser.parse_args(argv)

    command = list(ns.command)
    if command and command[0] == "--":
        command = command[1:]
    if not command:
        parser.error("missing executable")

    config = get_config()
    if ns.log_debug and not config.log_debug:
        config = with_debug_logging(config)
    configure_logging(config)
    logger.debug(f"Starting binwatch: {config}")

    return asyncio.run(
        run_command(
            command[0],
            command[1:],
            prefix=ns.prefix,
            threshold=ns.threshold,
            poll_interval=ns.poll_interval,
            drain_timeout=ns.drain_timeout,
            config=config,
        )
    )


if __name__ == "__main__":
    sys.exit(main())
