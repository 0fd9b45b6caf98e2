"""Value types shared by the supervised-execution runtime."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

__all__ = [
    "Command",
    "ExecutionResult",
]


@dataclass(frozen=True)
class Command:
    """Immutable argv: executable path followed by its arguments.

    Attributes:
        executable: Path (or PATH-resolvable name) of the binary
        args: Arguments passed after the executable
    """

    executable: str
    args: tuple[str, ...] = ()

    @classmethod
    def build(cls, executable: str | None, args: Iterable[str] | None) -> "Command":
        """Concatenate a base path and an argument list.

        Raises:
            ValueError: If executable is None/empty or args is None
        """
        if executable is None or not str(executable):
            raise ValueError("executable path must be a non-empty string")
        if args is None:
            raise ValueError("args must be a sequence (use [] for no arguments)")
        return cls(str(executable), tuple(str(a) for a in args))

    @property
    def argv(self) -> list[str]:
        """Full command line as a fresh list."""
        return [self.executable, *self.args]

    def __str__(self) -> str:
        return " ".join(self.argv)


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of a process that exited on its own.

    Attributes:
        exit_code: Terminal exit status (negative for signal deaths on POSIX)
        duration: Wall-clock seconds from launch to observed exit
    """

    exit_code: int
    duration: float

    @property
    def duration_ms(self) -> int:
        return int(self.duration * 1000)

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


def as_arg_list(args: Sequence[str] | None) -> list[str] | None:
    """Normalize a single string into a one-element argument list."""
    if args is None:
        return None
    if isinstance(args, str):
        return [args]
    return list(args)
