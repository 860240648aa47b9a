"""
Frame Feeds
===========

Where a stream session gets its next frame.

    DirectFeed  the session drives the capture path itself, using its
                own skip counter and the skip/size values of its
                AdaptiveController
    QueuedFeed  the session drains the shared FrameQueue filled by the
                capture task, dropping frames above its controller's
                current ceiling

Both return None when no frame is ready within the wait, which the
session answers with a keep-alive.
"""

import asyncio
import logging
import time
from collections import Counter
from typing import Optional, Protocol

from framecast.capture.frame import Frame
from framecast.capture.loop import CaptureLoop, FrameFilter
from framecast.capture.queue import FrameQueue
from framecast.capture.source import FrameSource
from framecast.models import DropReason
from framecast.pacing import pause
from framecast.stream.adaptive import AdaptiveController


logger = logging.getLogger(__name__)


class FrameFeed(Protocol):
    """Frame supply for one StreamSession."""

    dropped: Counter

    async def next_frame(self, timeout: float) -> Optional[Frame]:
        """Next frame, or None if none arrived within timeout."""
        ...

    def release(self, frame: Frame) -> None:
        """Return a frame obtained from next_frame()."""
        ...


class DirectFeed:
    """
    Direct hand-off from the capture path to one session.

    Skipped and oversized frames are released inside the capture
    path; the skip ratio and ceiling are read from the controller on
    every acquisition so they follow the session's error count.

    Attributes:
        dropped: Count of frames released unsent, by DropReason
    """

    def __init__(
        self,
        capture: CaptureLoop,
        controller: AdaptiveController,
        stop_event: asyncio.Event,
        unavailable_backoff: float = 0.05,
    ) -> None:
        self.capture = capture
        self.controller = controller
        self.unavailable_backoff = unavailable_backoff
        self.dropped: Counter = Counter()

        self._stop_event = stop_event
        self._filter = FrameFilter()

    async def next_frame(self, timeout: float) -> Optional[Frame]:
        deadline = time.monotonic() + timeout

        while not self._stop_event.is_set():
            result = await self.capture.capture_once(
                self._filter,
                self.controller.skip_ratio,
                self.controller.max_frame_bytes,
            )
            if result.frame is not None:
                return result.frame

            if result.dropped is not None:
                self.dropped[result.dropped] += 1
            else:
                logger.warning("Camera capture failed")
                await pause(self._stop_event, self.unavailable_backoff)

            if time.monotonic() >= deadline:
                return None
            # Let other sessions and the event loop run between acquisitions.
            await asyncio.sleep(0)

        return None

    def release(self, frame: Frame) -> None:
        self.capture.source.release(frame)


class QueuedFeed:
    """
    Consumer side of the shared FrameQueue.

    The capture task filters against the baseline ceiling. Frames
    popped while the session's controller has lowered its ceiling are
    checked again here and released as OVERSIZE. Queue-full drops are
    counted by the capture task, not here.

    Attributes:
        dropped: Count of frames released unsent, by DropReason
    """

    def __init__(
        self,
        queue: FrameQueue,
        source: FrameSource,
        controller: AdaptiveController,
    ) -> None:
        self.queue = queue
        self.source = source
        self.controller = controller
        self.dropped: Counter = Counter()

    async def next_frame(self, timeout: float) -> Optional[Frame]:
        deadline = time.monotonic() + timeout

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None

            frame = await self.queue.pop(timeout=remaining)
            if frame is None:
                return None
            if len(frame) <= self.controller.max_frame_bytes:
                return frame

            self.dropped[DropReason.OVERSIZE] += 1
            logger.debug(
                f"Queued frame {frame.frame_id} ({len(frame) // 1024} KB) "
                f"over the {self.controller.max_frame_bytes // 1024} KB ceiling"
            )
            self.source.release(frame)

    def release(self, frame: Frame) -> None:
        self.source.release(frame)
