"""Combined-output draining task.

Reads the child's merged stdout/stderr, splits it into lines, forwards every
line to the logging sink and stamps the shared ActivityMarker. A line ends
at ``\\n``, ``\\r\\n`` or a bare ``\\r``, so carriage-return progress output
(``frame=...\\r``) counts as activity. Draining is best-effort: read
failures are logged and end the task, they never fail the supervised
execution.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable

from ..errors import DrainError
from .watchdog import ActivityMarker

__all__ = [
    "OutputPump",
    "OutputSink",
    "logging_sink",
    "split_lines",
]

logger = logging.getLogger(__name__)

# Type alias: receives one fully formatted, prefixed output line
OutputSink = Callable[[str], None]

output_logger = logging.getLogger("binwatch.output")

READ_CHUNK_SIZE = 64 * 1024

# Unterminated output longer than this is forwarded as its own line
DEFAULT_MAX_LINE = 1024 * 1024

_LINE_BREAK = re.compile(rb"\r\n|\r|\n")


def logging_sink(line: str) -> None:
    """Default sink: forward process output to the ``binwatch.output`` logger."""
    output_logger.info(line)


def split_lines(buffer: bytearray) -> tuple[list[bytes], bool]:
    """Remove every complete line from ``buffer``.

    Args:
        buffer: Pending output; the unterminated tail is left in place

    Returns:
        (lines without terminators, True if the buffer ended in a bare ``\\r``).
        In the latter case a ``\\n`` at the start of the next chunk belongs
        to the same terminator.
    """
    lines: list[bytes] = []
    start = 0
    for match in _LINE_BREAK.finditer(buffer):
        lines.append(bytes(buffer[start:match.start()]))
        start = match.end()

    ends_with_cr = bool(lines) and start == len(buffer) and buffer.endswith(b"\r")
    del buffer[:start]
    return lines, ends_with_cr


class OutputPump:
    """Drains one process output stream into a sink.

    Exactly one pump runs per execution; ``start()`` refuses a second task.

    Attributes:
        prefix: Tag prepended to every forwarded line
        max_line: Unterminated output is flushed as a line past this size
        lines_read: Number of lines forwarded so far
        error: DrainError that ended the pump early, if any
        closed: True once the drain loop has exited for any reason
    """

    def __init__(
        self,
        stream: asyncio.StreamReader,
        sink: OutputSink,
        marker: ActivityMarker,
        prefix: str,
        max_line: int = DEFAULT_MAX_LINE,
    ) -> None:
        self._stream: asyncio.StreamReader | None = stream
        self._sink = sink
        self._marker = marker
        self.prefix = prefix
        self.max_line = max_line
        self.lines_read = 0
        self.error: DrainError | None = None
        self.closed = False
        self._task: asyncio.Task[None] | None = None

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    def start(self) -> asyncio.Task[None]:
        """Schedule the drain loop on the running event loop."""
        if self._task is not None:
            raise RuntimeError(f"output pump for [{self.prefix}] already started")
        self._task = asyncio.create_task(self.run(), name=f"binwatch-pump-{self.prefix}")
        return self._task

    async def run(self) -> None:
        """Drain until EOF, a read error, or cancellation."""
        buffer = bytearray()
        skip_lf = False
        try:
            while self._stream is not None:
                try:
                    chunk = await self._stream.read(READ_CHUNK_SIZE)
                except (OSError, ValueError, asyncio.IncompleteReadError) as e:
                    self._fail(f"error reading output: {e}", e)
                    return

                if not chunk:
                    break

                # Second half of a \r\n split across reads
                if skip_lf and chunk.startswith(b"\n"):
                    chunk = chunk[1:]
                buffer += chunk

                lines, skip_lf = split_lines(buffer)
                if len(buffer) >= self.max_line:
                    lines.append(bytes(buffer))
                    buffer.clear()

                if not self._forward(lines):
                    return

            if buffer:
                self._forward([bytes(buffer)])
        finally:
            self.closed = True
            self._stream = None
            logger.debug(f"[{self.prefix}] output pump closed after {self.lines_read} line(s)")

    def _forward(self, lines: list[bytes]) -> bool:
        """Send lines to the sink; False once the sink has failed."""
        for raw in lines:
            line = raw.decode("utf-8", errors="replace")
            try:
                self._sink(f"[{self.prefix}] {line}")
            except Exception as e:
                self._fail(f"output sink failed: {e}", e)
                return False

            self.lines_read += 1
            self._marker.touch()
        return True

    def _fail(self, message: str, cause: BaseException) -> None:
        error = DrainError(self.prefix, message)
        error.__cause__ = cause
        self.error = error
        logger.warning(f"[{self.prefix}] {message}")
