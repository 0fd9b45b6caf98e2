"""binwatch - supervised execution of external binaries.

Streams a binary's combined stdout/stderr to a logging sink and kills it
when it stops producing output for longer than a threshold.

Usage:
    binwatch --threshold 30 -- ffmpeg -i in.ts out.mp4
"""

__version__ = "0.1.0"

from .errors import (
    BinwatchError,
    DrainError,
    ExecutionInterrupted,
    LaunchError,
    StallError,
)
from .runtime import BinaryRunner, Command, ExecutionResult

__all__ = [
    "__version__",
    "BinaryRunner",
    "Command",
    "ExecutionResult",
    "BinwatchError",
    "LaunchError",
    "StallError",
    "DrainError",
    "ExecutionInterrupted",
]
