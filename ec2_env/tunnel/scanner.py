"""Incremental scraping of broker output.

`OutputScanner` drains whatever the broker has written so far into a growing
buffer and matches a pattern against all of it. `DeadlineLoop` keeps scanning
until the pattern matches, the deadline passes, or the broker exits.
"""

from __future__ import annotations

import codecs
import enum
import errno
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, Union


class Stream(Protocol):
    """Non-blocking byte source, such as the pty master of a broker process.

    `read` raises BlockingIOError when nothing is ready and signals
    end-of-file with b"" or OSError(EIO).
    """

    def read(self, size: int) -> bytes:
        ...


class _Pending:
    def __repr__(self):
        return "PENDING"

    def __bool__(self):
        return False


PENDING = _Pending()
"""Returned by `OutputScanner.scan` when the pattern has not matched yet."""


class ProcessExited(Exception):
    """The stream reached end-of-file; no more output will arrive."""

    def __init__(self, output: str):
        super().__init__(output)
        self.output = output


class OutputScanner:
    """Accumulates output from a non-blocking stream and matches against it.

    Each scan reads at most `max_burst` bytes, so a stream that never stops
    writing still hands control back to the caller between scans.
    """

    def __init__(self, stream: Stream, chunk_size: int = 1024, max_burst: int = 64 * 1024):
        self._stream = stream
        self._chunk_size = chunk_size
        self._max_burst = max_burst
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._output = ""
        self.exited = False

    @property
    def output(self) -> str:
        return self._output

    def _drain(self):
        """Read until the next read would block, the stream ends, or the burst is used up."""
        burst = 0
        while burst < self._max_burst:
            try:
                data = self._stream.read(self._chunk_size)
            except BlockingIOError:
                return
            except OSError as e:
                # Linux reports a pty whose child has gone away as EIO
                if e.errno != errno.EIO:
                    raise
                data = b""

            if not data:
                self.exited = True
                self._append(self._decoder.decode(b"", final=True))
                return

            self._append(self._decoder.decode(data))
            burst += len(data)

    def _append(self, text: str):
        if text:
            self._output += text

    def scan(self, pattern: Union[str, re.Pattern]) -> Union[re.Match, _Pending]:
        """Pull in new output, then search the whole buffer for `pattern`.

        Raises ProcessExited once the stream has ended and the buffer does
        not match; nothing is read after end-of-file.
        """
        if not self.exited:
            self._drain()

        match = re.search(pattern, self._output)
        if match is not None:
            return match
        if self.exited:
            raise ProcessExited(self._output)
        return PENDING


class LoopOutcome(enum.Enum):
    MATCHED = "matched"
    EXPIRED = "expired"
    PROCESS_EXITED = "process_exited"


@dataclass
class LoopResult:
    outcome: LoopOutcome
    output: str
    elapsed: float
    match: Optional[re.Match] = None

    @property
    def groups(self) -> tuple:
        return self.match.groups() if self.match is not None else ()


class DeadlineLoop:
    """Polls an `OutputScanner` for a pattern until a deadline.

    At least one scan always happens, so output that is already buffered
    matches even with a zero timeout.
    """

    def __init__(
        self,
        scanner: OutputScanner,
        timeout: float,
        poll_interval: float = 0.01,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.scanner = scanner
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._clock = clock
        self._sleep = sleep

    def run(self, pattern: Union[str, re.Pattern]) -> LoopResult:
        start = self._clock()
        deadline = start + self.timeout

        while True:
            try:
                match = self.scanner.scan(pattern)
            except ProcessExited as e:
                return LoopResult(LoopOutcome.PROCESS_EXITED, e.output, self._clock() - start)

            if match:
                return LoopResult(LoopOutcome.MATCHED, self.scanner.output, self._clock() - start, match)

            remaining = deadline - self._clock()
            if remaining <= 0:
                return LoopResult(LoopOutcome.EXPIRED, self.scanner.output, self._clock() - start)

            self._sleep(min(self.poll_interval, remaining))
