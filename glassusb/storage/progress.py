"""Progress accounting for extraction and validation walks.

A ProgressTracker is shared between the walk (which adds to it) and a
ProgressReporter thread (which samples it once per second). The reporter is
owned by the call that starts it and always stops, with a final summary line,
before that call returns.
"""

from __future__ import annotations

import sys
import threading
import time
from typing import Callable, Optional

from glassusb.logging import LoggerFactory, ThrottledLogger
from glassusb.storage.devices import human_size

log = LoggerFactory.for_content()

ProgressEmitter = Callable[[str, bool], None]


class ProgressTracker:
    """Thread-safe count of bytes processed since creation."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._bytes = 0
        self.start_time_millis = int(time.monotonic() * 1000)

    def add(self, count: int) -> None:
        with self._lock:
            self._bytes += count

    @property
    def bytes_processed(self) -> int:
        with self._lock:
            return self._bytes

    def elapsed_millis(self) -> int:
        return int(time.monotonic() * 1000) - self.start_time_millis


def format_elapsed(millis):
    """Format elapsed time in HH:MM:SS or MM:SS format."""
    seconds = max(int(millis // 1000), 0)
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours:d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def format_progress(
    bytes_processed: int,
    elapsed_millis: int,
    action: str,
    total_bytes: Optional[int] = None,
    final: bool = False,
) -> str:
    """Return a one-line progress description.

    Examples:
        "1.5GB extracted (37.5%), 12.0MB/s, 02:05 elapsed"
        "Finished: 4.0GB extracted in 05:30 (12.4MB/s)"
    """
    rate = ""
    if elapsed_millis > 0:
        rate = f"{human_size(bytes_processed * 1000 / elapsed_millis)}/s"
    elapsed = format_elapsed(elapsed_millis)
    if final:
        line = f"Finished: {human_size(bytes_processed)} {action} in {elapsed}"
        if rate:
            line += f" ({rate})"
        return line
    line = f"{human_size(bytes_processed)} {action}"
    if total_bytes:
        line += f" ({min(bytes_processed / total_bytes, 1.0) * 100:.1f}%)"
    if rate:
        line += f", {rate}"
    return f"{line}, {elapsed} elapsed"


class _ConsoleEmitter:
    """Overwrite a single stderr line each tick; log the final line."""

    def __init__(self, action: str) -> None:
        self.action = action
        self.throttled = ThrottledLogger(log, interval_seconds=10.0)

    def __call__(self, line: str, final: bool) -> None:
        if final:
            if sys.stderr.isatty():
                sys.stderr.write("\r\033[K")
                sys.stderr.flush()
            log.info(line)
            return
        if sys.stderr.isatty():
            sys.stderr.write(f"\r\033[K{line}")
            sys.stderr.flush()
        self.throttled.debug(self.action, line)


class ProgressReporter:
    """Periodic progress printer running on a background thread.

    Usage:
        tracker = ProgressTracker()
        with ProgressReporter(tracker, "extracted", total_bytes=size):
            ...  # walk, calling tracker.add()
    """

    def __init__(
        self,
        tracker: ProgressTracker,
        action: str,
        total_bytes: Optional[int] = None,
        interval: float = 1.0,
        emit: Optional[ProgressEmitter] = None,
    ) -> None:
        self.tracker = tracker
        self.action = action
        self.total_bytes = total_bytes
        self.interval = interval
        self.emit = emit or _ConsoleEmitter(action)
        self._done = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _line(self, final: bool) -> str:
        return format_progress(
            self.tracker.bytes_processed,
            self.tracker.elapsed_millis(),
            self.action,
            total_bytes=self.total_bytes,
            final=final,
        )

    def _run(self) -> None:
        while not self._done.wait(self.interval):
            self.emit(self._line(final=False), False)

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run, name=f"progress-{self.action}", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop the thread and synchronously emit the final summary line."""
        if self._thread is None:
            return
        self._done.set()
        self._thread.join()
        self._thread = None
        self.emit(self._line(final=True), True)

    @property
    def running(self) -> bool:
        return self._thread is not None

    def __enter__(self) -> "ProgressReporter":
        self.start()
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.stop()
