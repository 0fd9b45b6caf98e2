"""Registry of in-flight supervised runs.

Lets the signal manager cancel every active run on SIGINT/SIGTERM. Each
cancelled run kills its child process before the cancellation propagates.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime

__all__ = ["RunRegistry", "RunInfo"]

logger = logging.getLogger(__name__)


@dataclass
class RunInfo:
    """An active run.

    Attributes:
        run_id: Unique run identifier
        label: Human-readable label (usually the log prefix)
        task: The asyncio Task executing the run
        created_at: Registration time
    """

    run_id: str
    label: str
    task: asyncio.Task
    created_at: datetime = field(default_factory=datetime.now)

    def __repr__(self) -> str:
        elapsed = (datetime.now() - self.created_at).total_seconds()
        status = "running" if not self.task.done() else "done"
        return (
            f"RunInfo(id={self.run_id[:8]}..., "
            f"label={self.label}, "
            f"status={status}, "
            f"elapsed={elapsed:.1f}s)"
        )


class RunRegistry:
    """Registry of active runs.

    All methods are synchronous and must be called from the event loop
    thread that owns the tasks.

    Example:
        registry = RunRegistry()
        task = asyncio.create_task(runner.execute(args))
        run_id = registry.generate_run_id()
        registry.register(run_id, runner.log_prefix, task)
        try:
            await task
        finally:
            registry.unregister(run_id)
    """

    def __init__(self) -> None:
        self._runs: dict[str, RunInfo] = {}

    @staticmethod
    def generate_run_id() -> str:
        return str(uuid.uuid4())

    def register(self, run_id: str, label: str, task: asyncio.Task) -> None:
        """Register a run.

        Raises:
            ValueError: If run_id is already registered
        """
        if run_id in self._runs:
            raise ValueError(f"Run {run_id} already registered")

        info = RunInfo(run_id=run_id, label=label, task=task)
        self._runs[run_id] = info
        logger.debug(f"Registered run: {info}")

    def unregister(self, run_id: str) -> bool:
        info = self._runs.pop(run_id, None)
        if info is None:
            return False
        logger.debug(f"Unregistered run: {info}")
        return True

    def get(self, run_id: str) -> RunInfo | None:
        return self._runs.get(run_id)

    def cancel_all(self) -> int:
        """Cancel every unfinished run.

        Returns:
            Number of runs a cancel was requested for
        """
        cancelled = 0
        for info in list(self._runs.values()):
            if not info.task.done():
                info.task.cancel()
                logger.info(f"Cancelled run: {info}")
                cancelled += 1

        return cancelled

    def has_active_runs(self) -> bool:
        return any(not info.task.done() for info in self._runs.values())

    @property
    def active_count(self) -> int:
        return sum(1 for info in self._runs.values() if not info.task.done())

    def __len__(self) -> int:
        return len(self._runs)

    def __contains__(self, run_id: str) -> bool:
        return run_id in self._runs
