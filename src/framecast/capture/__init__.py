"""
Capture Module
==============

Frame acquisition, filtering and buffering.

This module provides the producer side of the pipeline:
    - Frame: Immutable captured JPEG
    - FrameSource: Camera protocol (+ MockFrameSource, OpenCVFrameSource)
    - FrameQueue: Bounded drop-newest queue
    - FrameFilter / CaptureLoop: Skip and size filtering, capture task

Example:
    from framecast.capture import CaptureLoop, FrameQueue, MockFrameSource

    source = MockFrameSource()
    queue = FrameQueue(capacity=5)
    loop = CaptureLoop(source, settings.capture)

    task = asyncio.create_task(loop.run(queue, max_frame_bytes=25 * 1024))
"""

from framecast.capture.frame import Frame
from framecast.capture.queue import FrameQueue
from framecast.capture.source import (
    FrameSource,
    LeaseTracker,
    MockFrameSource,
    OpenCVFrameSource,
    create_frame_source,
)
from framecast.capture.loop import CaptureLoop, CaptureMetrics, CaptureResult, FrameFilter


__all__ = [
    "Frame",
    "FrameQueue",
    "FrameSource",
    "LeaseTracker",
    "MockFrameSource",
    "OpenCVFrameSource",
    "create_frame_source",
    "CaptureLoop",
    "CaptureMetrics",
    "CaptureResult",
    "FrameFilter",
]
