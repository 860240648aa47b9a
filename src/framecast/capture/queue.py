"""
Frame Queue
===========

Bounded hand-off between the capture task and a stream session.

Design Rules:
    - Fixed capacity (drops NEWEST on overflow; the producer never waits)
    - Rejected frames go back to the caller, who releases them
    - Timed pop; a timeout is not an error
    - Does NOT process or modify frames
"""

import asyncio
import logging
from typing import Optional

from framecast.capture.frame import Frame


logger = logging.getLogger(__name__)


class FrameQueue:
    """
    Async bounded FIFO of frames with drop-newest backpressure.

    The queue never owns a rejected frame: try_push() returns False
    and the caller is responsible for releasing it. Frames that are
    accepted belong to the queue until pop() or drain() hands them on.

    Attributes:
        capacity: Maximum number of frames buffered
        dropped_count: Frames rejected because the queue was full

    Example:
        queue = FrameQueue(capacity=5)

        # Producer
        if not queue.try_push(frame):
            source.release(frame)

        # Consumer
        frame = await queue.pop(timeout=1.0)
        if frame is None:
            send_keepalive()
    """

    def __init__(self, capacity: int = 5) -> None:
        """
        Initialize frame queue.

        Args:
            capacity: Maximum frames to buffer. Must be >= 1.
        """
        if capacity < 1:
            raise ValueError("capacity must be >= 1")

        self._capacity = capacity
        self._queue: asyncio.Queue[Frame] = asyncio.Queue(maxsize=capacity)
        self._dropped_count: int = 0
        self._total_pushed: int = 0

    @property
    def capacity(self) -> int:
        """Maximum queue size."""
        return self._capacity

    @property
    def size(self) -> int:
        """Current number of frames in queue."""
        return self._queue.qsize()

    @property
    def dropped_count(self) -> int:
        """Number of frames rejected because the queue was full."""
        return self._dropped_count

    @property
    def total_pushed(self) -> int:
        """Frames accepted into the queue."""
        return self._total_pushed

    def try_push(self, frame: Frame) -> bool:
        """
        Add frame if there is room.

        Args:
            frame: Frame to add

        Returns:
            True if queued. False if the queue was full; the frame
            was NOT queued and the caller still owns it.
        """
        try:
            self._queue.put_nowait(frame)
        except asyncio.QueueFull:
            self._dropped_count += 1
            logger.debug(
                f"Queue full, dropped newest frame {frame.frame_id}. "
                f"Total dropped: {self._dropped_count}"
            )
            return False

        self._total_pushed += 1
        return True

    async def pop(self, timeout: Optional[float] = None) -> Optional[Frame]:
        """
        Get next frame from queue.

        Args:
            timeout: Maximum seconds to wait. None = wait forever.

        Returns:
            Next frame, or None if timeout occurred.
        """
        try:
            if timeout is not None:
                return await asyncio.wait_for(self._queue.get(), timeout=timeout)
            return await self._queue.get()
        except asyncio.TimeoutError:
            return None

    def drain(self) -> list[Frame]:
        """
        Remove every queued frame.

        Returns:
            The removed frames, oldest first. The caller releases them.
        """
        drained = []
        while True:
            try:
                drained.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                break
        return drained

    def metrics(self) -> dict:
        """
        Get queue metrics for observability.

        Returns:
            Dict with size, capacity, dropped_count, total_pushed
        """
        return {
            "size": self.size,
            "capacity": self._capacity,
            "dropped_count": self._dropped_count,
            "total_pushed": self._total_pushed,
        }
