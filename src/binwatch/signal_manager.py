"""Signal handling for the binwatch command line.

Turns OS signals into run-level actions instead of killing the supervisor
outright, so the supervised child is always terminated first:
- SIGINT: cancel active runs (request shutdown if none are active)
- SIGINT twice within the double-tap window: force exit
- SIGTERM: cancel active runs and request shutdown
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import time
from typing import Callable, Optional

from .config import get_config
from .registry import RunRegistry

__all__ = ["SignalManager"]

logger = logging.getLogger(__name__)


class SignalManager:
    """Installs SIGINT/SIGTERM handlers that cancel registered runs.

    Example:
        ```python
        registry = RunRegistry()
        signal_manager = SignalManager(registry)

        async def main():
            await signal_manager.start()
            try:
                await run_everything(registry)
            finally:
                await signal_manager.stop()

        asyncio.run(main())
        ```

    Attributes:
        registry: Active run registry
        double_tap_window: Seconds within which a second SIGINT forces exit
    """

    def __init__(
        self,
        registry: RunRegistry,
        double_tap_window: Optional[float] = None,
        on_shutdown: Optional[Callable[[], None]] = None,
    ) -> None:
        self.registry = registry
        self.double_tap_window = (
            double_tap_window
            if double_tap_window is not None
            else get_config().sigint_double_tap_window
        )
        self._on_shutdown = on_shutdown

        self._last_sigint_time: float = 0.0
        self._shutdown_requested: bool = False
        self._force_exit: bool = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._original_sigint_handler = None
        self._running: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested

    @property
    def is_force_exit(self) -> bool:
        """True after a double SIGINT."""
        return self._force_exit

    async def start(self) -> None:
        """Install the handlers. Must be called inside the running loop."""
        if self._running:
            logger.warning("SignalManager already running")
            return

        self._loop = asyncio.get_running_loop()
        self._shutdown_event = asyncio.Event()
        self._running = True

        if sys.platform != "win32":
            self._loop.add_signal_handler(signal.SIGINT, self._handle_sigint)
            self._loop.add_signal_handler(signal.SIGTERM, self._handle_sigterm)
            logger.debug(
                f"Signal handlers installed (double_tap_window={self.double_tap_window}s)"
            )
        else:
            self._original_sigint_handler = signal.signal(
                signal.SIGINT,
                lambda sig, frame: self._loop.call_soon_threadsafe(self._handle_sigint),
            )
            logger.debug("SIGINT handler installed on Windows")

    async def stop(self) -> None:
        """Restore the original handlers."""
        if not self._running:
            return

        self._running = False

        if sys.platform != "win32" and self._loop:
            try:
                self._loop.remove_signal_handler(signal.SIGINT)
                self._loop.remove_signal_handler(signal.SIGTERM)
            except Exception as e:
                logger.debug(f"Error removing signal handlers: {e}")
        elif sys.platform == "win32" and self._original_sigint_handler is not None:
            try:
                signal.signal(signal.SIGINT, self._original_sigint_handler)
            except Exception as e:
                logger.debug(f"Error restoring SIGINT handler: {e}")

        logger.debug("Signal handlers removed")

    async def wait_for_shutdown(self) -> None:
        if self._shutdown_event:
            await self._shutdown_event.wait()

    def _handle_sigint(self) -> None:
        current_time = time.monotonic()
        time_since_last = current_time - self._last_sigint_time
        self._last_sigint_time = current_time

        if time_since_last < self.double_tap_window and self._shutdown_requested:
            logger.warning("Double SIGINT detected, forcing shutdown")
            self._force_exit = True
            self._request_shutdown()
            return

        if self.registry.has_active_runs():
            count = self.registry.cancel_all()
            logger.info(
                f"SIGINT received, cancelled {count} run(s). "
                f"Press Ctrl+C again within {self.double_tap_window}s to force exit."
            )
            self._shutdown_requested = True
        else:
            logger.info("SIGINT received, no active runs, requesting shutdown")
            self._request_shutdown()

    def _handle_sigterm(self) -> None:
        logger.info("SIGTERM received, initiating graceful shutdown")
        if self.registry.has_active_runs():
            count = self.registry.cancel_all()
            logger.info(f"Cancelled {count} active run(s) for shutdown")
        self._request_shutdown()

    def _request_shutdown(self) -> None:
        self._shutdown_requested = True

        if self._on_shutdown:
            try:
                self._on_shutdown()
            except Exception as e:
                logger.warning(f"Error in shutdown callback: {e}")

        if self._shutdown_event and self._loop:
            self._loop.call_soon_threadsafe(self._shutdown_event.set)
