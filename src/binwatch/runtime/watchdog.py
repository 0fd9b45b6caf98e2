"""Inactivity watchdog for supervised processes.

This module provides:
- ActivityMarker: last-output timestamp shared by the output pump (writer)
  and the supervisor (reader)
- InactivityWatchdog: the ALIVE_ACTIVE -> STALLED / EXITED state machine
  evaluated on every supervisor poll tick

Key design points:
- Single writer, single reader on one event loop: a plain float attribute
  is enough, no lock
- The marker never moves backwards
- Stall detection uses a strict greater-than comparison, so a silence of
  exactly the threshold is tolerated
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from enum import Enum

__all__ = [
    "ActivityMarker",
    "InactivityWatchdog",
    "WatchdogState",
    "recommended_poll_interval",
    "validate_threshold",
]

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class WatchdogState(str, Enum):
    """Watchdog states.

    - ALIVE_ACTIVE: process running and output seen recently
    - STALLED: process running but silent for longer than the threshold
    - EXITED: liveness check reported completion
    """

    ALIVE_ACTIVE = "alive_active"
    STALLED = "stalled"
    EXITED = "exited"

    @property
    def is_terminal(self) -> bool:
        return self is not WatchdogState.ALIVE_ACTIVE


class ActivityMarker:
    """Monotonic timestamp of the last successfully read output line."""

    __slots__ = ("_clock", "_value")

    def __init__(self, clock: Clock = time.monotonic, start: float | None = None) -> None:
        self._clock = clock
        self._value = clock() if start is None else start

    @property
    def value(self) -> float:
        return self._value

    def touch(self) -> float:
        """Record activity now. Never moves the marker backwards."""
        now = self._clock()
        if now > self._value:
            self._value = now
        return self._value

    def idle_for(self) -> float:
        """Seconds elapsed since the last recorded activity."""
        return max(0.0, self._clock() - self._value)

    def __repr__(self) -> str:
        return f"ActivityMarker(idle_for={self.idle_for():.2f}s)"


class InactivityWatchdog:
    """Decides, per poll tick, whether a live process has stalled.

    Example:
        marker = ActivityMarker()
        watchdog = InactivityWatchdog(marker, threshold=30.0)

        while True:
            state = watchdog.check(control.is_alive(process))
            if state is WatchdogState.STALLED:
                ...  # kill and raise
            if state is WatchdogState.EXITED:
                break
            await asyncio.sleep(poll_interval)
    """

    def __init__(self, marker: ActivityMarker, threshold: float) -> None:
        self.marker = marker
        self.threshold = validate_threshold(threshold)
        self._state = WatchdogState.ALIVE_ACTIVE

    @property
    def state(self) -> WatchdogState:
        return self._state

    def idle_for(self) -> float:
        return self.marker.idle_for()

    def check(self, alive: bool) -> WatchdogState:
        """Advance the state machine by one poll tick.

        Terminal states are sticky: once STALLED or EXITED, further checks
        return the same state.
        """
        if self._state.is_terminal:
            return self._state

        if not alive:
            self._state = WatchdogState.EXITED
        elif self.marker.idle_for() > self.threshold:
            self._state = WatchdogState.STALLED
            logger.debug(
                f"Watchdog tripped: idle={self.marker.idle_for():.2f}s "
                f"threshold={self.threshold:.2f}s"
            )

        return self._state


def validate_threshold(threshold: float) -> float:
    """Return the threshold as a float.

    Raises:
        ValueError: If it is not a positive finite number (NaN would never trip)
    """
    value = float(threshold)
    if not math.isfinite(value) or value <= 0:
        raise ValueError(f"inactivity threshold must be a positive finite number, got {threshold}")
    return value


def recommended_poll_interval(threshold: float, default: float) -> float:
    """Clamp the poll interval to at most a tenth of the threshold."""
    return max(0.001, min(default, threshold / 10.0))
