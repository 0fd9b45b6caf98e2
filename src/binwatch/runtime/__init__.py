"""Runtime module for supervised binary execution.

This module provides process launch behind a platform capability interface,
concurrent output draining, and the inactivity watchdog.
"""

from __future__ import annotations

from .output_pump import OutputPump, OutputSink, logging_sink
from .process_control import (
    PosixProcessControl,
    ProcessControl,
    WindowsProcessControl,
    default_process_control,
)
from .supervisor import BinaryRunner, RunHandle
from .types import Command, ExecutionResult
from .watchdog import ActivityMarker, InactivityWatchdog, WatchdogState

__all__ = [
    "ActivityMarker",
    "BinaryRunner",
    "Command",
    "ExecutionResult",
    "InactivityWatchdog",
    "OutputPump",
    "OutputSink",
    "PosixProcessControl",
    "ProcessControl",
    "RunHandle",
    "WatchdogState",
    "WindowsProcessControl",
    "default_process_control",
    "logging_sink",
]
