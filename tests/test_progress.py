"""Tests for storage/progress.py - byte counting and periodic reporting."""

import threading
import time

import pytest

from glassusb.storage import progress
from glassusb.storage.progress import ProgressReporter, ProgressTracker


class TestProgressTracker:
    def test_starts_at_zero(self):
        tracker = ProgressTracker()

        assert tracker.bytes_processed == 0
        assert tracker.elapsed_millis() >= 0

    def test_add_accumulates(self):
        tracker = ProgressTracker()

        tracker.add(100)
        tracker.add(28)

        assert tracker.bytes_processed == 128

    def test_concurrent_adds_are_not_lost(self):
        tracker = ProgressTracker()

        def worker():
            for _ in range(10000):
                tracker.add(1)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert tracker.bytes_processed == 40000


class TestFormatElapsed:
    @pytest.mark.parametrize(
        "millis, expected",
        [(0, "00:00"), (59999, "00:59"), (125000, "02:05"), (3723000, "1:02:03")],
    )
    def test_formats(self, millis, expected):
        assert progress.format_elapsed(millis) == expected


class TestFormatProgress:
    def test_in_progress_line_with_total(self):
        line = progress.format_progress(
            1536 * 1024 * 1024, 125000, "extracted", total_bytes=4096 * 1024 * 1024
        )

        assert line.startswith("1.5GB extracted (37.5%), ")
        assert line.endswith("/s, 02:05 elapsed")

    def test_in_progress_line_without_total(self):
        line = progress.format_progress(2048, 1000, "validated")

        assert line == "2.0KB validated, 2.0KB/s, 00:01 elapsed"

    def test_zero_elapsed_has_no_rate(self):
        line = progress.format_progress(0, 0, "extracted")

        assert line == "0.0B extracted, 00:00 elapsed"

    def test_final_line(self):
        line = progress.format_progress(
            4 * 1024 * 1024 * 1024, 330000, "extracted", final=True
        )

        assert line.startswith("Finished: 4.0GB extracted in 05:30 (")
        assert line.endswith("MB/s)")

    def test_percentage_capped_at_100(self):
        line = progress.format_progress(200, 1000, "extracted", total_bytes=100)

        assert "(100.0%)" in line


class TestProgressReporter:
    """Tests for ProgressReporter lifecycle."""

    def test_emits_periodic_and_final_lines(self):
        tracker = ProgressTracker()
        lines = []
        reporter = ProgressReporter(
            tracker, "extracted", interval=0.01, emit=lambda l, f: lines.append((l, f))
        )

        with reporter:
            tracker.add(10)
            time.sleep(0.1)

        periodic = [line for line, final in lines if not final]
        finals = [line for line, final in lines if final]
        assert periodic
        assert len(finals) == 1
        assert lines[-1][1] is True
        assert finals[0].startswith("Finished: 10.0B extracted")

    def test_stop_is_synchronous(self):
        tracker = ProgressTracker()
        lines = []
        reporter = ProgressReporter(
            tracker, "validated", interval=60.0, emit=lambda l, f: lines.append((l, f))
        )

        reporter.start()
        assert reporter.running is True
        reporter.stop()

        assert reporter.running is False
        assert lines == [(lines[0][0], True)]

    def test_stop_without_start_emits_nothing(self):
        lines = []
        reporter = ProgressReporter(
            ProgressTracker(), "extracted", emit=lambda l, f: lines.append((l, f))
        )

        reporter.stop()

        assert lines == []

    def test_stopped_when_block_raises(self):
        lines = []
        reporter = ProgressReporter(
            ProgressTracker(), "extracted", interval=60.0,
            emit=lambda l, f: lines.append((l, f)),
        )

        with pytest.raises(RuntimeError):
            with reporter:
                raise RuntimeError("boom")

        assert reporter.running is False
        assert lines[-1][1] is True

    def test_thread_does_not_outlive_reporter(self):
        before = {thread.name for thread in threading.enumerate()}
        reporter = ProgressReporter(ProgressTracker(), "unique-action", emit=lambda l, f: None)

        with reporter:
            assert "progress-unique-action" in {t.name for t in threading.enumerate()}

        after = {thread.name for thread in threading.enumerate()}
        assert "progress-unique-action" not in after
        assert "progress-unique-action" not in before


class TestConsoleEmitter:
    def test_final_line_goes_to_log(self, mocker):
        info = mocker.patch.object(progress.log, "info")
        emitter = progress._ConsoleEmitter("extracted")

        emitter("Finished: 1.0KB extracted in 00:01", True)

        info.assert_called_once_with("Finished: 1.0KB extracted in 00:01")

    def test_periodic_lines_are_throttled(self, mocker):
        emitter = progress._ConsoleEmitter("extracted")
        debug = mocker.patch.object(emitter.throttled.log, "debug")

        emitter("line 1", False)
        emitter("line 2", False)

        debug.assert_called_once_with("line 1")
