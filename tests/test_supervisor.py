"""BinaryRunner (supervised execution) tests.

Test coverage:
- Construction and argument preconditions
- Exit code and duration reporting
- Stall detection and forced termination
- Periodic output keeps long runs alive
- Launch failures
- Cancellation (task cancel and anyio.CancelScope)
- Cleanup: no output pump task outlives execute
"""

from __future__ import annotations

import asyncio
import sys
import time

import anyio
import pytest

from binwatch.config import Config
from binwatch.errors import ExecutionInterrupted, LaunchError, StallError
from binwatch.runtime.process_control import (
    IS_WINDOWS,
    PosixProcessControl,
    WindowsProcessControl,
)
from binwatch.runtime.supervisor import BinaryRunner
from binwatch.runtime.types import ExecutionResult

_PlatformControl = WindowsProcessControl if IS_WINDOWS else PosixProcessControl


class RecordingControl(_PlatformControl):
    """Platform control that remembers every process it spawned."""

    def __init__(self) -> None:
        super().__init__(term_timeout=0.5, kill_timeout=0.5)
        self.spawned: list[asyncio.subprocess.Process] = []
        self.kill_calls = 0

    async def spawn(self, command):
        process = await super().spawn(command)
        self.spawned.append(process)
        return process

    async def kill(self, process):
        self.kill_calls += 1
        await super().kill(process)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def control() -> RecordingControl:
    return RecordingControl()


@pytest.fixture
def config() -> Config:
    return Config(poll_interval=0.05, drain_timeout=0.5, term_timeout=0.5, kill_timeout=0.5)


@pytest.fixture
def runner(
    control: RecordingControl,
    config: Config,
    captured_lines: list[str],
) -> BinaryRunner:
    """Runner over the current interpreter; args start with the fake binary."""
    return BinaryRunner(
        sys.executable,
        "fake",
        process_control=control,
        sink=captured_lines.append,
        config=config,
    )


@pytest.fixture
def fake_args(fake_binary_path: str) -> list[str]:
    return ["-u", fake_binary_path]


def pending_pumps() -> list[asyncio.Task]:
    return [
        t
        for t in asyncio.all_tasks()
        if t.get_name().startswith("binwatch-pump") and not t.done()
    ]


# =============================================================================
# Construction Tests
# =============================================================================


class TestConstruction:
    """Test preconditions checked before anything is spawned."""

    @pytest.mark.parametrize("path", [None, ""])
    def test_missing_executable_rejected(self, path):
        with pytest.raises(ValueError):
            BinaryRunner(path, "x", config=Config())

    @pytest.mark.asyncio
    async def test_none_args_rejected(self, runner: BinaryRunner, control: RecordingControl):
        with pytest.raises(ValueError):
            await runner.execute(None)
        assert control.spawned == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("threshold", [0, -1.0, float("nan"), float("inf")])
    async def test_invalid_threshold_rejected(
        self, runner: BinaryRunner, control: RecordingControl, threshold: float
    ):
        with pytest.raises(ValueError):
            await runner.execute([], inactivity_threshold=threshold)
        assert control.spawned == []

    def test_defaults_from_config(self):
        runner = BinaryRunner("/bin/true", "t", config=Config(inactivity_threshold=12.0))
        assert runner.default_threshold == 12.0
        assert runner.poll_interval == 1.0
        assert runner.drain_timeout == 1.0


# =============================================================================
# Normal Completion Tests
# =============================================================================


class TestCompletion:
    """Test exit code and duration reporting."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_exit_code_zero(self, runner: BinaryRunner, fake_args: list[str]):
        result = await runner.execute(fake_args, inactivity_threshold=5)

        assert isinstance(result, ExecutionResult)
        assert result.exit_code == 0
        assert result.succeeded

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_exit_code_seven(
        self, runner: BinaryRunner, fake_args: list[str], caplog: pytest.LogCaptureFixture
    ):
        result = await runner.execute(fake_args + ["--exit-code", "7"], inactivity_threshold=5)

        assert result.exit_code == 7
        assert not result.succeeded
        assert "failed with exit code: 7" in caplog.text

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    async def test_zero_arguments(self, config: Config):
        runner = BinaryRunner("true", "true", config=config)

        result = await runner.execute([], inactivity_threshold=5)

        assert result.exit_code == 0

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_duration_tracks_wall_clock(
        self, runner: BinaryRunner, fake_args: list[str]
    ):
        start = time.monotonic()
        result = await runner.execute(
            fake_args + ["--count", "1", "--silent-after", "0.5"], inactivity_threshold=5
        )
        elapsed = time.monotonic() - start

        assert result.duration >= 0.5
        assert result.duration <= elapsed
        assert elapsed - result.duration < 2.0
        assert result.duration_ms == int(result.duration * 1000)

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_output_forwarded_with_prefix(
        self, runner: BinaryRunner, fake_args: list[str], captured_lines: list[str]
    ):
        await runner.execute(fake_args + ["--count", "4", "--stderr"], inactivity_threshold=5)

        assert sorted(captured_lines) == [
            "[fake] line 1",
            "[fake] line 2",
            "[fake] line 3",
            "[fake] line 4",
        ]

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_runner_reusable(self, runner: BinaryRunner, fake_args: list[str]):
        first = await runner.execute(fake_args + ["--exit-code", "3"], inactivity_threshold=5)
        second = await runner.execute(fake_args, inactivity_threshold=5)

        assert (first.exit_code, second.exit_code) == (3, 0)

    def test_execute_sync(self, runner: BinaryRunner, fake_args: list[str]):
        result = runner.execute_sync(fake_args + ["--exit-code", "2"], inactivity_threshold=5)
        assert result.exit_code == 2


# =============================================================================
# Stall Detection Tests
# =============================================================================


class TestStall:
    """Test inactivity detection and forced termination."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_silent_process_stalls(
        self,
        runner: BinaryRunner,
        control: RecordingControl,
        fake_args: list[str],
        caplog: pytest.LogCaptureFixture,
    ):
        start = time.monotonic()
        with pytest.raises(StallError) as exc_info:
            await runner.execute(
                fake_args + ["--delay-before-output", "10"], inactivity_threshold=1.0
            )
        elapsed = time.monotonic() - start

        # Raised around the threshold, not after the 10s sleep
        assert 1.0 <= elapsed < 5.0
        assert exc_info.value.threshold == 1.0
        assert exc_info.value.idle_for > 1.0
        assert "stalled" in caplog.text

        process = control.spawned[0]
        assert not control.is_alive(process)

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_goes_silent_after_output(
        self,
        runner: BinaryRunner,
        control: RecordingControl,
        fake_args: list[str],
        captured_lines: list[str],
    ):
        with pytest.raises(StallError):
            await runner.execute(
                fake_args + ["--count", "2", "--silent-after", "10"], inactivity_threshold=1.0
            )

        assert captured_lines == ["[fake] line 1", "[fake] line 2"]
        assert not control.is_alive(control.spawned[0])

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_periodic_output_prevents_stall(
        self, runner: BinaryRunner, fake_args: list[str], captured_lines: list[str]
    ):
        # ~2.1s total runtime against a 1s threshold, a line every 0.3s
        result = await runner.execute(
            fake_args + ["--count", "8", "--interval", "0.3"], inactivity_threshold=1.0
        )

        assert result.exit_code == 0
        assert result.duration > 1.0
        assert len(captured_lines) == 8

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_carriage_return_progress_prevents_stall(
        self, runner: BinaryRunner, fake_args: list[str], captured_lines: list[str]
    ):
        # ~2.75s of "line N\r" progress updates against a 1s threshold
        result = await runner.execute(
            fake_args + ["--count", "12", "--interval", "0.25", "--carriage-return"],
            inactivity_threshold=1.0,
        )

        assert result.exit_code == 0
        assert result.duration > 1.0
        assert captured_lines[0] == "[fake] line 1"
        assert len(captured_lines) == 12

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    async def test_stall_kills_sigterm_ignoring_process(
        self, runner: BinaryRunner, control: RecordingControl, fake_args: list[str]
    ):
        with pytest.raises(StallError):
            await runner.execute(
                fake_args + ["--ignore-sigterm", "--count", "1", "--silent-after", "30"],
                inactivity_threshold=1.0,
            )

        assert control.spawned[0].returncode == -9


# =============================================================================
# Launch Failure Tests
# =============================================================================


class TestLaunchFailure:
    """Test OS refusal to start the process."""

    @pytest.mark.asyncio
    async def test_nonexistent_binary(self, config: Config):
        runner = BinaryRunner("nonexistent_command_xyz_123", "nope", config=config)

        with pytest.raises(LaunchError) as exc_info:
            await runner.execute([])

        assert isinstance(exc_info.value.__cause__, OSError)
        assert exc_info.value.command == ("nonexistent_command_xyz_123",)

    @pytest.mark.asyncio
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    async def test_not_executable(self, tmp_path, config: Config):
        script = tmp_path / "script.sh"
        script.write_text("#!/bin/sh\necho hi\n")
        script.chmod(0o644)
        runner = BinaryRunner(str(script), "script", config=config)

        with pytest.raises(LaunchError):
            await runner.execute([])


# =============================================================================
# Cancellation Tests
# =============================================================================


class TestCancellation:
    """Test that external cancellation terminates the child first."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_task_cancel_kills_process(
        self, runner: BinaryRunner, control: RecordingControl, fake_args: list[str]
    ):
        task = asyncio.create_task(
            runner.execute(fake_args + ["--delay-before-output", "30"], inactivity_threshold=60)
        )
        await asyncio.sleep(0.5)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert not control.is_alive(control.spawned[0])
        assert pending_pumps() == []

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_cancel_scope_raises_interrupted(
        self, runner: BinaryRunner, control: RecordingControl, fake_args: list[str]
    ):
        cancel_scope = anyio.CancelScope()
        task = asyncio.create_task(
            runner.execute(
                fake_args + ["--delay-before-output", "30"],
                inactivity_threshold=60,
                cancel_scope=cancel_scope,
            )
        )
        await asyncio.sleep(0.5)

        cancel_scope.cancel()
        with pytest.raises(ExecutionInterrupted):
            await task

        assert not control.is_alive(control.spawned[0])

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    async def test_force_kill_skips_grace_period(
        self, runner: BinaryRunner, control: RecordingControl, fake_args: list[str]
    ):
        task = asyncio.create_task(
            runner.execute(
                fake_args + ["--ignore-sigterm", "--count", "1", "--silent-after", "30"],
                inactivity_threshold=60,
            )
        )
        while not control.spawned:
            await asyncio.sleep(0.05)

        assert runner.force_kill() == 1
        result = await task

        assert result.exit_code == -9
        assert control.kill_calls == 1
        assert runner.force_kill() == 0


# =============================================================================
# Cleanup Tests
# =============================================================================


class TestCleanup:
    """Test that every exit path tears down the process and the pump."""

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_no_pump_after_success(self, runner: BinaryRunner, fake_args: list[str]):
        await runner.execute(fake_args, inactivity_threshold=5)
        assert pending_pumps() == []

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_no_pump_after_stall(self, runner: BinaryRunner, fake_args: list[str]):
        with pytest.raises(StallError):
            await runner.execute(
                fake_args + ["--delay-before-output", "10"], inactivity_threshold=1.0
            )
        assert pending_pumps() == []

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    async def test_kill_attempted_on_normal_exit(
        self, runner: BinaryRunner, control: RecordingControl, fake_args: list[str]
    ):
        await runner.execute(fake_args, inactivity_threshold=5)
        assert control.kill_calls == 1

    @pytest.mark.asyncio
    @pytest.mark.timeout(15)
    @pytest.mark.skipif(IS_WINDOWS, reason="POSIX-specific test")
    async def test_lagging_pump_abandoned(self, config: Config, captured_lines: list[str]):
        """A grandchild holding the pipe open must not block completion."""
        runner = BinaryRunner("sh", "sh", sink=captured_lines.append, config=config)

        start = time.monotonic()
        result = await runner.execute(["-c", "sleep 3 & echo started"], inactivity_threshold=5)
        elapsed = time.monotonic() - start

        assert result.exit_code == 0
        assert elapsed < 2.5
        assert captured_lines == ["[sh] started"]
        assert pending_pumps() == []
