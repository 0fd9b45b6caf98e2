"""binwatch exception classes.

Only LaunchError, StallError and ExecutionInterrupted ever leave
``BinaryRunner.execute``. DrainError is raised and caught inside the output
pump so it can be logged and inspected, never propagated.
"""

from __future__ import annotations

from collections.abc import Sequence

__all__ = [
    "BinwatchError",
    "LaunchError",
    "StallError",
    "DrainError",
    "ExecutionInterrupted",
]


class BinwatchError(Exception):
    """Base exception for supervised execution failures."""
    pass


class LaunchError(BinwatchError):
    """The operating system refused to start the process.

    Attributes:
        command: The argv that failed to launch
    """

    def __init__(self, command: Sequence[str], message: str) -> None:
        self.command = tuple(command)
        super().__init__(message)


class StallError(BinwatchError):
    """The process produced no output for longer than the threshold.

    The process has already been terminated when this is raised.

    Attributes:
        command: The argv of the stalled process
        threshold: Configured inactivity threshold (seconds)
        idle_for: Observed silence at detection time (seconds)
    """

    def __init__(
        self,
        command: Sequence[str],
        threshold: float,
        idle_for: float,
        message: str | None = None,
    ) -> None:
        self.command = tuple(command)
        self.threshold = threshold
        self.idle_for = idle_for
        super().__init__(
            message
            or f"no output for {idle_for:.1f}s (threshold {threshold:.1f}s)"
        )


class DrainError(BinwatchError):
    """Reading the combined output stream failed.

    Attributes:
        prefix: Log prefix of the run whose stream failed
    """

    def __init__(self, prefix: str, message: str) -> None:
        self.prefix = prefix
        super().__init__(message)


class ExecutionInterrupted(BinwatchError):
    """The owning application cancelled the run while it was waiting.

    The process has already been terminated when this is raised.

    Attributes:
        command: The argv of the interrupted process
    """

    def __init__(self, command: Sequence[str], message: str) -> None:
        self.command = tuple(command)
        super().__init__(message)
