"""
Capture Loop
============

Pulls frames from a FrameSource and applies the skip and size filters.

This module provides:
    - FrameFilter: skip-ratio then size-ceiling check, in that order
    - CaptureResult: outcome of one acquisition
    - CaptureLoop: one-shot capture for direct sessions, and the
      repeating capture task that feeds a FrameQueue

Design Rules:
    - Only the capture path touches the source (single-owner device)
    - Every acquired frame is forwarded or released exactly once
    - Capture faults are absorbed here and never reach the transport
    - Idles on a coarse sleep while no client is streaming
"""

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Optional

from framecast.capture.frame import Frame
from framecast.capture.queue import FrameQueue
from framecast.capture.source import FrameSource
from framecast.config import CaptureConfig
from framecast.models import DropReason
from framecast.pacing import pause


logger = logging.getLogger(__name__)


class FrameFilter:
    """
    Skip-ratio and size-ceiling filter.

    Frames are counted from zero; frame i passes the skip stage
    when i % skip_ratio == 0. Only frames that pass the skip stage
    are checked against the size ceiling. Each caller that needs its
    own skip pattern (one per direct session, one for the capture
    task) keeps its own FrameFilter.
    """

    def __init__(self) -> None:
        self._index: int = 0

    @property
    def frames_seen(self) -> int:
        return self._index

    def check(
        self,
        frame: Frame,
        skip_ratio: int,
        max_frame_bytes: int,
    ) -> Optional[DropReason]:
        """
        Decide whether a frame is forwarded.

        Returns:
            None to forward, otherwise the reason to drop it.
        """
        index = self._index
        self._index += 1

        if index % max(1, skip_ratio) != 0:
            return DropReason.SKIPPED
        if len(frame) > max_frame_bytes:
            return DropReason.OVERSIZE
        return None


@dataclass(frozen=True, slots=True)
class CaptureResult:
    """
    Outcome of one acquisition through the filters.

    Exactly one of the three cases holds:
        - frame is set: forwarded, the caller now owns it
        - dropped is set: filtered and already released
        - neither: the source was unavailable
    """

    frame: Optional[Frame] = None
    dropped: Optional[DropReason] = None

    @property
    def unavailable(self) -> bool:
        return self.frame is None and self.dropped is None


class CaptureMetrics:
    """Metrics for CaptureLoop observability."""

    __slots__ = (
        "frames_captured",
        "frames_forwarded",
        "dropped",
        "unavailable",
        "capture_errors",
    )

    def __init__(self) -> None:
        self.frames_captured: int = 0
        self.frames_forwarded: int = 0
        self.dropped: Counter = Counter()
        self.unavailable: int = 0
        self.capture_errors: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "frames_captured": self.frames_captured,
            "frames_forwarded": self.frames_forwarded,
            "frames_dropped": {reason.value: count for reason, count in self.dropped.items()},
            "unavailable": self.unavailable,
            "capture_errors": self.capture_errors,
        }


class CaptureLoop:
    """
    Capture path for both streaming modes.

    Direct mode: each session calls capture_once() with its own
    FrameFilter and the skip/size values from its AdaptiveController.

    Queued mode: run() repeats capture_once() with a fixed skip ratio
    and pushes survivors into a FrameQueue, dropping the newest frame
    when the queue is full.

    Attributes:
        source: Camera backend; only this object calls it
        config: Capture timing configuration
        metrics: Operational metrics

    Example:
        loop = CaptureLoop(source, settings.capture, stop_event,
                           is_enabled=lambda: context.streaming_enabled)
        task = asyncio.create_task(loop.run(queue, max_frame_bytes=25 * 1024))

        # Later
        loop.stop()
        await task
    """

    def __init__(
        self,
        source: FrameSource,
        config: CaptureConfig,
        stop_event: Optional[asyncio.Event] = None,
        is_enabled: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.source = source
        self.config = config
        self.metrics = CaptureMetrics()

        self._stop_event = stop_event or asyncio.Event()
        self._is_enabled = is_enabled or (lambda: True)
        self._running: bool = False
        self._device_lock = asyncio.Lock()
        self._filter = FrameFilter()

    @property
    def running(self) -> bool:
        return self._running

    async def capture_once(
        self,
        frame_filter: FrameFilter,
        skip_ratio: int,
        max_frame_bytes: int,
    ) -> CaptureResult:
        """
        Acquire one frame and run it through the filters.

        Filtered frames are released before returning, so the caller
        only ever owns a forwarded frame.

        Args:
            frame_filter: Skip counter for the calling consumer
            skip_ratio: Forward every Nth frame
            max_frame_bytes: Size ceiling

        Returns:
            CaptureResult describing the outcome
        """
        frame = await self._acquire()
        if frame is None:
            self.metrics.unavailable += 1
            return CaptureResult()

        self.metrics.frames_captured += 1
        reason = frame_filter.check(frame, skip_ratio, max_frame_bytes)

        if reason is None:
            self.metrics.frames_forwarded += 1
            return CaptureResult(frame=frame)

        self.metrics.dropped[reason] += 1
        if reason is DropReason.OVERSIZE:
            logger.warning(f"Frame too large ({len(frame) // 1024} KB), skipping")

        self.source.release(frame)
        return CaptureResult(dropped=reason)

    async def run(self, queue: FrameQueue, max_frame_bytes: int) -> None:
        """
        Feed a FrameQueue until stopped.

        Pauses (no acquisition) while streaming is disabled.
        Call stop() or set the stop event to terminate.

        Args:
            queue: Destination queue
            max_frame_bytes: Size ceiling for queued frames
        """
        self._running = True
        logger.info("Capture task started")

        try:
            while self._running and not self._stop_event.is_set():
                try:
                    await self._step(queue, max_frame_bytes)
                except asyncio.CancelledError:
                    logger.info("Capture task cancelled")
                    raise
                except Exception as e:
                    self.metrics.capture_errors += 1
                    logger.error(f"Capture task error: {e}")
                    await pause(self._stop_event, self.config.unavailable_backoff_seconds)
        finally:
            self._running = False
            logger.info("Capture task stopped")

    async def _step(self, queue: FrameQueue, max_frame_bytes: int) -> None:
        """One iteration of the queued capture task."""
        if not self._is_enabled():
            await pause(self._stop_event, self.config.idle_interval_seconds)
            return

        result = await self.capture_once(
            self._filter,
            self.config.queued_skip_ratio,
            max_frame_bytes,
        )

        if result.unavailable:
            logger.warning("Camera capture failed")
            await pause(self._stop_event, self.config.unavailable_backoff_seconds)
            return

        if result.frame is None:
            await pause(self._stop_event, self.config.filtered_pause_seconds)
            return

        if not queue.try_push(result.frame):
            self.metrics.dropped[DropReason.QUEUE_FULL] += 1
            logger.warning("Queue full, dropping frame")
            self.source.release(result.frame)

        await pause(self._stop_event, self.config.capture_interval_seconds)

    def stop(self) -> None:
        """Signal the run loop to exit at its next iteration."""
        self._running = False

    async def _acquire(self) -> Optional[Frame]:
        """
        Run the blocking acquire in a worker thread, one caller at a time.

        The device lock is held until the worker thread returns, even
        if the caller is cancelled first.
        """
        await self._device_lock.acquire()
        future = asyncio.ensure_future(asyncio.to_thread(self.source.acquire))
        future.add_done_callback(self._unlock_device)
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            # The worker thread keeps running; give back whatever it returns.
            future.add_done_callback(self._release_orphan)
            raise
        except Exception as e:
            self.metrics.capture_errors += 1
            logger.error(f"Frame source error: {e}")
            return None

    def _unlock_device(self, future: "asyncio.Future[Optional[Frame]]") -> None:
        self._device_lock.release()

    def _release_orphan(self, future: "asyncio.Future[Optional[Frame]]") -> None:
        if future.cancelled() or future.exception() is not None:
            return
        frame = future.result()
        if frame is not None:
            logger.debug(f"Releasing frame {frame.frame_id} from a cancelled acquire")
            self.source.release(frame)
