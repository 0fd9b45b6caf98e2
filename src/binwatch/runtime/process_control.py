"""Platform process capability interface.

binwatch runtime module

This module provides:
- ProcessControl: the small capability surface the supervisor depends on
  (spawn, liveness, kill, exit code, combined output stream)
- PosixProcessControl: new session + process-group signalling
- WindowsProcessControl: CREATE_NEW_PROCESS_GROUP + CTRL_BREAK_EVENT
- default_process_control(): picks the implementation once per platform

Key design points:
- stderr is merged into stdout so a single reader drains everything
- Termination escalates: graceful signal -> term_timeout -> forced kill
- kill() is idempotent and never raises for an already-exited process
- The supervisor never branches on the platform itself
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import subprocess
import sys
import time
from abc import ABC, abstractmethod
from typing import Any

from .types import Command

__all__ = [
    "IS_WINDOWS",
    "ProcessControl",
    "PosixProcessControl",
    "WindowsProcessControl",
    "default_process_control",
]

logger = logging.getLogger(__name__)

# Platform detection
IS_WINDOWS = sys.platform == "win32"

# Default timeouts
DEFAULT_TERM_TIMEOUT = 2.0  # seconds to wait after the graceful signal
DEFAULT_KILL_TIMEOUT = 1.0  # seconds to wait after the forced kill

# asyncio.StreamReader buffer limit for the combined output pipe
DEFAULT_BUFFER_LIMIT = 1024 * 1024

# Exit is re-checked at this cadence while a kill waits; a grandchild holding
# the pipe open can delay process.wait() past the child's exit
EXIT_CHECK_INTERVAL = 0.05


class ProcessControl(ABC):
    """Capability interface over the platform's process primitives.

    Subclasses provide the platform-specific isolation kwargs and the
    graceful/forced termination signals. Everything else is shared.

    Example:
        control = default_process_control()
        process = await control.spawn(Command.build("/usr/bin/env", ["true"]))
        while control.is_alive(process):
            await control.wait(process, timeout=1.0)
        print(control.exit_code(process))
    """

    def __init__(
        self,
        term_timeout: float = DEFAULT_TERM_TIMEOUT,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
        buffer_limit: int = DEFAULT_BUFFER_LIMIT,
    ) -> None:
        self.term_timeout = term_timeout
        self.kill_timeout = kill_timeout
        self.buffer_limit = buffer_limit

    async def spawn(self, command: Command) -> asyncio.subprocess.Process:
        """Start the command with stderr merged into stdout.

        stdin is DEVNULL so the child never inherits (and never blocks on)
        the supervisor's own stdin.

        Raises:
            OSError: If the OS refuses to start the process
        """
        process = await asyncio.create_subprocess_exec(
            *command.argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            limit=self.buffer_limit,
            **self._isolation_kwargs(),
        )
        logger.debug(f"Started subprocess pid={process.pid} argv={command.executable}")
        return process

    def is_alive(self, process: asyncio.subprocess.Process) -> bool:
        return process.returncode is None

    async def wait(self, process: asyncio.subprocess.Process, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for exit. Returns True once exited."""
        if not self.is_alive(process):
            return True
        try:
            await asyncio.wait_for(process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass
        return not self.is_alive(process)

    def exit_code(self, process: asyncio.subprocess.Process) -> int:
        if process.returncode is None:
            raise RuntimeError(f"process pid={process.pid} is still running")
        return process.returncode

    def output_stream(self, process: asyncio.subprocess.Process) -> asyncio.StreamReader:
        if process.stdout is None:
            raise RuntimeError(f"process pid={process.pid} has no output pipe")
        return process.stdout

    async def kill(self, process: asyncio.subprocess.Process) -> None:
        """Terminate the process gracefully, then forcefully if needed.

        Termination strategy:
        1. Send the graceful signal (SIGTERM / CTRL_BREAK_EVENT)
        2. Wait up to term_timeout for exit
        3. If still running, force kill (SIGKILL / TerminateProcess)
        4. Wait up to kill_timeout for forced exit

        Safe to call on a process that has already exited.
        """
        if not self.is_alive(process):
            return

        pid = process.pid
        logger.debug(f"Terminating subprocess pid={pid}")

        try:
            self._send_terminate(process)

            if await self._wait_for_exit(process, self.term_timeout):
                logger.debug(
                    f"Subprocess terminated gracefully pid={pid} "
                    f"returncode={process.returncode}"
                )
                return

            logger.debug(f"Force killing subprocess pid={pid}")
            self._send_kill(process)

            if await self._wait_for_exit(process, self.kill_timeout):
                logger.debug(
                    f"Subprocess killed pid={pid} "
                    f"returncode={process.returncode}"
                )
            else:
                logger.warning(f"Subprocess did not exit after kill pid={pid}")

        except ProcessLookupError:
            logger.debug(f"Subprocess already exited pid={pid}")
        except Exception as e:
            logger.warning(f"Error terminating subprocess pid={pid}: {e}")

    def force_kill(self, process: asyncio.subprocess.Process) -> bool:
        """Send the forced kill right away, without the grace period or waiting.

        Returns:
            True if a signal was sent, False if the process had already exited
        """
        if not self.is_alive(process):
            return False
        try:
            self._send_kill(process)
        except ProcessLookupError:
            return False
        logger.debug(f"Force kill sent without grace period pid={process.pid}")
        return True

    async def _wait_for_exit(self, process: asyncio.subprocess.Process, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds, returning as soon as the exit status is known."""
        deadline = time.monotonic() + timeout
        while self.is_alive(process):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            await self.wait(process, timeout=min(remaining, EXIT_CHECK_INTERVAL))
        return True

    @abstractmethod
    def _isolation_kwargs(self) -> dict[str, Any]:
        """Platform-specific kwargs for asyncio.create_subprocess_exec."""

    @abstractmethod
    def _send_terminate(self, process: asyncio.subprocess.Process) -> None:
        """Deliver the graceful termination signal."""

    @abstractmethod
    def _send_kill(self, process: asyncio.subprocess.Process) -> None:
        """Deliver the forced kill."""


class PosixProcessControl(ProcessControl):
    """POSIX: the child leads its own session, signals go to the group."""

    def _isolation_kwargs(self) -> dict[str, Any]:
        # equivalent to setsid
        return {"start_new_session": True}

    def _send_terminate(self, process: asyncio.subprocess.Process) -> None:
        self._signal_group(process, signal.SIGTERM)

    def _send_kill(self, process: asyncio.subprocess.Process) -> None:
        self._signal_group(process, signal.SIGKILL)

    def _signal_group(self, process: asyncio.subprocess.Process, sig: int) -> None:
        try:
            # pgid == pid because of start_new_session
            pgid = os.getpgid(process.pid)
            os.killpg(pgid, sig)
            logger.debug(f"Sent {signal.Signals(sig).name} to process group pgid={pgid}")
        except ProcessLookupError:
            pass
        except OSError as e:
            logger.debug(f"killpg failed, falling back to single process: {e}")
            process.send_signal(sig)


class WindowsProcessControl(ProcessControl):
    """Windows: new process group so CTRL_BREAK_EVENT reaches only the child."""

    def _isolation_kwargs(self) -> dict[str, Any]:
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}

    def _send_terminate(self, process: asyncio.subprocess.Process) -> None:
        try:
            os.kill(process.pid, signal.CTRL_BREAK_EVENT)
            logger.debug(f"Sent CTRL_BREAK_EVENT to pid={process.pid}")
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"CTRL_BREAK_EVENT failed, falling back: {e}")
            process.terminate()

    def _send_kill(self, process: asyncio.subprocess.Process) -> None:
        process.kill()
        logger.debug(f"Called kill() on pid={process.pid}")


def default_process_control(
    term_timeout: float = DEFAULT_TERM_TIMEOUT,
    kill_timeout: float = DEFAULT_KILL_TIMEOUT,
) -> ProcessControl:
    """Select the capability implementation for the running platform."""
    cls = WindowsProcessControl if IS_WINDOWS else PosixProcessControl
    return cls(term_timeout=term_timeout, kill_timeout=kill_timeout)
