"""Supervised execution of an external binary.

binwatch runtime module

This module provides:
- BinaryRunner: launch a binary, stream its combined output to a sink,
  kill it when it goes silent for too long, report exit code and duration
- RunHandle: per-execution state (process, activity marker, output pump)

Key design points:
- Two units of work per run: this coroutine polls, the pump task reads
- The ActivityMarker is the only state shared between them
- Cleanup (kill + bounded pump shutdown) runs exactly once per run under
  asyncio.shield, so cancellation cannot leak a child process
- A lagging pump is cancelled and abandoned after drain_timeout; lines it
  had not forwarded yet are lost
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass

import anyio

from ..config import Config, get_config
from ..errors import ExecutionInterrupted, LaunchError, StallError
from .output_pump import OutputPump, OutputSink, logging_sink
from .process_control import ProcessControl, default_process_control
from .types import Command, ExecutionResult, as_arg_list
from .watchdog import (
    ActivityMarker,
    InactivityWatchdog,
    WatchdogState,
    recommended_poll_interval,
    validate_threshold,
)

__all__ = [
    "BinaryRunner",
    "RunHandle",
]

logger = logging.getLogger(__name__)


@dataclass
class RunHandle:
    """One in-flight execution.

    Attributes:
        command: The argv being executed
        process: The spawned child process
        marker: Last-output timestamp written by the pump
        started_at: Monotonic launch time
        pump: The output draining task wrapper
        released: Set once cleanup has run
    """

    command: Command
    process: asyncio.subprocess.Process
    marker: ActivityMarker
    started_at: float
    pump: OutputPump | None = None
    released: bool = False


class BinaryRunner:
    """Runs one binary under an inactivity watchdog.

    Example:
        runner = BinaryRunner("/usr/bin/ffmpeg", "ffmpeg")
        result = await runner.execute(["-i", "in.ts", "out.mp4"], inactivity_threshold=30)
        if not result.succeeded:
            ...

    Each ``execute`` call builds its own RunHandle, so one runner can be
    reused (sequentially or concurrently) for many invocations.
    """

    def __init__(
        self,
        executable_path: str | None,
        log_prefix: str,
        *,
        process_control: ProcessControl | None = None,
        sink: OutputSink | None = None,
        poll_interval: float | None = None,
        drain_timeout: float | None = None,
        config: Config | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            executable_path: Binary to run (required, non-empty)
            log_prefix: Tag for output lines and status messages
            process_control: Platform capability implementation (default: auto)
            sink: Receives each prefixed output line (default: logging)
            poll_interval: Watchdog poll cadence in seconds (default: config)
            drain_timeout: Bounded wait for the pump at cleanup (default: config)
            config: Configuration source (default: environment)

        Raises:
            ValueError: If executable_path is None or empty
        """
        if executable_path is None or not str(executable_path):
            raise ValueError("executable path must be a non-empty string")

        config = config or get_config()
        self.executable_path = str(executable_path)
        self.log_prefix = log_prefix
        self.process_control = process_control or default_process_control(
            term_timeout=config.term_timeout,
            kill_timeout=config.kill_timeout,
        )
        self.sink = sink or logging_sink
        self.poll_interval = poll_interval if poll_interval is not None else config.poll_interval
        self.drain_timeout = drain_timeout if drain_timeout is not None else config.drain_timeout
        self.default_threshold = config.inactivity_threshold
        self._running: set[asyncio.subprocess.Process] = set()

    def __repr__(self) -> str:
        return f"BinaryRunner({self.executable_path!r}, prefix={self.log_prefix!r})"

    async def execute(
        self,
        args: Sequence[str] | None,
        inactivity_threshold: float | None = None,
        *,
        cancel_scope: anyio.CancelScope | None = None,
    ) -> ExecutionResult:
        """Execute the binary and wait for it to exit or stall.

        Args:
            args: Arguments appended to the executable ([] for none)
            inactivity_threshold: Max seconds without output while alive
                (default: config, 30s)
            cancel_scope: Optional anyio.CancelScope owned by the caller;
                once cancel is called the process is killed and
                ExecutionInterrupted is raised

        Returns:
            ExecutionResult with exit code and wall-clock duration

        Raises:
            ValueError: If args is None or the threshold is not a positive finite number
            LaunchError: If the process could not be started
            StallError: If the process went silent for longer than the threshold
            ExecutionInterrupted: If cancel_scope was cancelled mid-run
            asyncio.CancelledError: If this task was cancelled (after cleanup)
        """
        command = Command.build(self.executable_path, as_arg_list(args))
        threshold = validate_threshold(
            self.default_threshold if inactivity_threshold is None else inactivity_threshold
        )

        handle = await self._launch(command)
        self._running.add(handle.process)
        try:
            stream = self.process_control.output_stream(handle.process)
            handle.pump = OutputPump(stream, self.sink, handle.marker, self.log_prefix)
            handle.pump.start()
            return await self._watch(handle, threshold, cancel_scope)
        finally:
            try:
                await self._safe_release(handle)
            finally:
                self._running.discard(handle.process)

    def force_kill(self) -> int:
        """Forcibly kill every child this runner is supervising, without waiting.

        The regular cleanup in ``execute`` still runs and reaps the processes.

        Returns:
            Number of processes signalled
        """
        return sum(
            1 for process in list(self._running) if self.process_control.force_kill(process)
        )

    def execute_sync(
        self,
        args: Sequence[str] | None,
        inactivity_threshold: float | None = None,
    ) -> ExecutionResult:
        """Blocking variant of :meth:`execute` for non-async callers."""
        return asyncio.run(self.execute(args, inactivity_threshold))

    async def _launch(self, command: Command) -> RunHandle:
        try:
            process = await self.process_control.spawn(command)
        except OSError as e:
            logger.error(f"{self.log_prefix} could not be started: {e}")
            raise LaunchError(
                command.argv, f"{self.log_prefix} could not be started: {e}"
            ) from e

        started_at = time.monotonic()
        return RunHandle(
            command=command,
            process=process,
            marker=ActivityMarker(start=started_at),
            started_at=started_at,
        )

    async def _watch(
        self,
        handle: RunHandle,
        threshold: float,
        cancel_scope: anyio.CancelScope | None,
    ) -> ExecutionResult:
        """Poll liveness and inactivity until exit, stall or interruption."""
        control = self.process_control
        process = handle.process
        watchdog = InactivityWatchdog(handle.marker, threshold)
        poll_interval = recommended_poll_interval(threshold, self.poll_interval)

        while True:
            if cancel_scope is not None and cancel_scope.cancel_called:
                logger.warning(f"{self.log_prefix} interrupted, terminating...")
                await control.kill(process)
                raise ExecutionInterrupted(
                    handle.command.argv, f"{self.log_prefix} was interrupted"
                )

            state = watchdog.check(control.is_alive(process))
            if state is WatchdogState.EXITED:
                break
            if state is WatchdogState.STALLED:
                idle_for = watchdog.idle_for()
                logger.warning(
                    f"{self.log_prefix} stalled for {threshold:g} seconds, terminating..."
                )
                await control.kill(process)
                raise StallError(
                    handle.command.argv,
                    threshold,
                    idle_for,
                    f"{self.log_prefix} stalled due to inactivity",
                )

            await control.wait(process, timeout=poll_interval)

        duration = time.monotonic() - handle.started_at
        logger.info(f"{self.log_prefix} execution took {duration * 1000:.0f} ms")

        exit_code = control.exit_code(process)
        if exit_code != 0:
            logger.warning(f"{self.log_prefix} failed with exit code: {exit_code}")

        return ExecutionResult(exit_code=exit_code, duration=duration)

    async def _safe_release(self, handle: RunHandle) -> None:
        """Run cleanup to completion even if the caller is being cancelled."""
        task = asyncio.ensure_future(self._release(handle))
        try:
            await asyncio.shield(task)
        except asyncio.CancelledError:
            # Let cleanup finish before propagating the cancel
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                logger.debug(
                    f"Double cancel during cleanup pid={handle.process.pid}"
                )
            raise

    async def _release(self, handle: RunHandle) -> None:
        """Kill the process (no-op if exited) and stop the pump, once."""
        if handle.released:
            return
        handle.released = True

        await self.process_control.kill(handle.process)

        task = handle.pump.task if handle.pump else None
        if task is None:
            return

        if not task.done():
            await asyncio.wait({task}, timeout=self.drain_timeout)
        if not task.done():
            logger.debug(
                f"{self.log_prefix} output pump still busy after "
                f"{self.drain_timeout:g}s, cancelling"
            )
            task.cancel()
            await asyncio.wait({task}, timeout=self.drain_timeout)
            if not task.done():
                logger.warning(f"{self.log_prefix} abandoning unresponsive output pump")
                return

        if not task.cancelled() and task.exception() is not None:
            logger.warning(
                f"{self.log_prefix} output pump failed: {task.exception()}"
            )
