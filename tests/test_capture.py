"""
Capture Tests
=============

Skip/size filtering, frame release accounting and the queued capture task.
"""

import asyncio
import threading
import time

import pytest

from conftest import KB, ScriptedFrameSource, make_frame, run
from framecast.capture.loop import CaptureLoop, FrameFilter
from framecast.capture.queue import FrameQueue
from framecast.models import DropReason


class SlowFrameSource(ScriptedFrameSource):
    """Blocks in acquire() and records how many threads are inside it at once."""

    def __init__(self, delay: float) -> None:
        super().__init__()
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def acquire(self):
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(self.delay)
            return super().acquire()
        finally:
            with self._lock:
                self.active -= 1


class TestFrameFilter:
    """Tests for the skip-then-size filter."""

    def test_skip_then_size_forwards_single_frame(self):
        """Sizes 10/10/30/10 KB with K=2 and a 25 KB ceiling forward only the first."""
        frame_filter = FrameFilter()
        frames = [make_frame(size * KB, frame_id=i) for i, size in enumerate([10, 10, 30, 10])]

        results = [frame_filter.check(frame, 2, 25 * KB) for frame in frames]

        assert results == [
            None,
            DropReason.SKIPPED,
            DropReason.OVERSIZE,
            DropReason.SKIPPED,
        ]
        assert frame_filter.frames_seen == 4

    def test_skip_ratio_one_forwards_everything(self):
        frame_filter = FrameFilter()
        results = [frame_filter.check(make_frame(100), 1, 25 * KB) for _ in range(5)]
        assert results == [None] * 5

    def test_skipped_frame_is_not_size_checked(self):
        """An oversized frame at a skipped index counts as SKIPPED."""
        frame_filter = FrameFilter()
        frame_filter.check(make_frame(100), 12, 25 * KB)

        assert frame_filter.check(make_frame(100 * KB), 12, 25 * KB) is DropReason.SKIPPED

    def test_frame_at_ceiling_passes(self):
        frame_filter = FrameFilter()
        assert frame_filter.check(make_frame(25 * KB), 2, 25 * KB) is None


class TestCaptureOnce:
    """Tests for CaptureLoop.capture_once()."""

    def test_filtered_frames_are_released(self, fast_settings):
        source = ScriptedFrameSource([10 * KB, 10 * KB, 30 * KB, 10 * KB])

        async def scenario():
            capture = CaptureLoop(source, fast_settings.capture)
            frame_filter = FrameFilter()
            return capture, [
                await capture.capture_once(frame_filter, 2, 25 * KB) for _ in range(4)
            ]

        capture, results = run(scenario())

        forwarded = [result.frame for result in results if result.frame is not None]
        assert len(forwarded) == 1
        assert [result.dropped for result in results] == [
            None,
            DropReason.SKIPPED,
            DropReason.OVERSIZE,
            DropReason.SKIPPED,
        ]
        # Only the forwarded frame is still out of the source
        assert source.outstanding == 1
        assert source.released_count == 3
        assert capture.metrics.frames_forwarded == 1
        assert capture.metrics.dropped == {DropReason.SKIPPED: 2, DropReason.OVERSIZE: 1}
        assert capture.metrics.to_dict()["frames_dropped"] == {"SKIPPED": 2, "OVERSIZE": 1}

    def test_unavailable_source(self, fast_settings):
        source = ScriptedFrameSource([None])

        async def scenario():
            capture = CaptureLoop(source, fast_settings.capture)
            return capture, await capture.capture_once(FrameFilter(), 2, 25 * KB)

        capture, result = run(scenario())

        assert result.unavailable
        assert result.frame is None
        assert capture.metrics.unavailable == 1
        assert capture.metrics.frames_captured == 0

    def test_source_exception_is_absorbed(self, fast_settings):
        """A raising backend is reported as Unavailable, not propagated."""

        class BrokenSource(ScriptedFrameSource):
            def acquire(self):
                raise RuntimeError("sensor timeout")

        source = BrokenSource()

        async def scenario():
            capture = CaptureLoop(source, fast_settings.capture)
            return capture, await capture.capture_once(FrameFilter(), 2, 25 * KB)

        capture, result = run(scenario())

        assert result.unavailable
        assert capture.metrics.capture_errors == 1

    def test_cancelled_acquire_keeps_device_locked(self, fast_settings):
        """The next caller waits for the abandoned acquire, whose frame goes back."""
        source = SlowFrameSource(delay=0.1)

        async def scenario():
            capture = CaptureLoop(source, fast_settings.capture)
            first = asyncio.create_task(capture.capture_once(FrameFilter(), 1, 25 * KB))
            await asyncio.sleep(0.02)
            first.cancel()
            with pytest.raises(asyncio.CancelledError):
                await first

            return await capture.capture_once(FrameFilter(), 1, 25 * KB)

        result = run(scenario())

        assert source.max_active == 1
        assert source.acquired_count == 2
        # The abandoned frame was released; only the second is still out
        assert result.frame is not None
        assert source.outstanding == 1
        source.release(result.frame)
        assert source.outstanding == 0


class TestCaptureTask:
    """Tests for the queued-mode capture task."""

    def test_full_queue_drops_newest_and_releases(self, fast_settings):
        source = ScriptedFrameSource(tail_size=1 * KB)
        config = fast_settings.capture.model_copy(update={"queued_skip_ratio": 1})

        async def scenario():
            stop_event = asyncio.Event()
            queue = FrameQueue(capacity=2)
            capture = CaptureLoop(source, config, stop_event=stop_event)
            task = asyncio.create_task(capture.run(queue, 25 * KB))

            for _ in range(1000):
                if queue.dropped_count >= 3:
                    break
                await asyncio.sleep(0.001)

            stop_event.set()
            await asyncio.wait_for(task, timeout=2.0)
            return capture, queue

        capture, queue = run(scenario())

        assert queue.size == 2
        assert queue.dropped_count >= 3
        assert capture.metrics.dropped[DropReason.QUEUE_FULL] == queue.dropped_count
        assert capture.running is False
        # Rejected frames went back to the source; only queued ones are out
        assert source.outstanding == 2

    def test_idle_while_streaming_disabled(self, fast_settings):
        source = ScriptedFrameSource()

        async def scenario():
            stop_event = asyncio.Event()
            queue = FrameQueue(capacity=5)
            capture = CaptureLoop(
                source,
                fast_settings.capture,
                stop_event=stop_event,
                is_enabled=lambda: False,
            )
            task = asyncio.create_task(capture.run(queue, 25 * KB))
            await asyncio.sleep(0.05)
            capture.stop()
            stop_event.set()
            await asyncio.wait_for(task, timeout=2.0)
            return queue

        queue = run(scenario())

        assert source.acquired_count == 0
        assert queue.size == 0

    def test_queued_task_applies_filters(self, fast_settings):
        """Oversized frames never reach the queue."""
        source = ScriptedFrameSource(tail_size=40 * KB)

        async def scenario():
            stop_event = asyncio.Event()
            queue = FrameQueue(capacity=5)
            capture = CaptureLoop(source, fast_settings.capture, stop_event=stop_event)
            task = asyncio.create_task(capture.run(queue, 25 * KB))

            for _ in range(1000):
                if capture.metrics.dropped[DropReason.OVERSIZE] >= 3:
                    break
                await asyncio.sleep(0.001)

            stop_event.set()
            await asyncio.wait_for(task, timeout=2.0)
            return capture, queue

        capture, queue = run(scenario())

        assert queue.size == 0
        assert capture.metrics.dropped[DropReason.OVERSIZE] >= 3
        assert capture.metrics.dropped[DropReason.SKIPPED] >= 2
        assert source.outstanding == 0
