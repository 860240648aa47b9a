"""
Frame Sources
=============

Camera abstraction for the capture pipeline.

This module provides the FrameSource protocol and its backends. The
streaming core only ever calls acquire() and release(); sensor setup and
encoding stay behind this boundary.

Components:
    - FrameSource: Protocol every backend implements
    - LeaseTracker: Bookkeeping for acquire/release ownership
    - MockFrameSource: Deterministic synthetic frames (no camera needed)
    - OpenCVFrameSource: cv2.VideoCapture device or stream URL

Design Rules:
    - acquire() returns the newest frame or None (Unavailable)
    - acquire() may block; callers run it in a worker thread
    - release() must be called exactly once per acquired frame
"""

import logging
import threading
import time
from typing import Optional, Protocol

import cv2
import numpy as np

from framecast.capture.frame import Frame
from framecast.config import CaptureConfig
from framecast.errors import CaptureError, FrameReleaseError


logger = logging.getLogger(__name__)


class FrameSource(Protocol):
    """
    Protocol for capture backends.

    Implementations:
        - MockFrameSource (tests, demos)
        - OpenCVFrameSource (USB cameras, RTSP/HTTP sources)
    """

    def acquire(self) -> Optional[Frame]:
        """
        Return the most recently completed frame.

        Returns:
            Frame, or None when no frame is available right now.
            None is transient: back off briefly and retry.
        """
        ...

    def release(self, frame: Frame) -> None:
        """
        Give a frame's buffer back to the source.

        Raises:
            FrameReleaseError: frame already released or never issued
        """
        ...

    def close(self) -> None:
        """Release the underlying device."""
        ...


class LeaseTracker:
    """
    Tracks which frames are currently out of a source.

    acquire() runs in a worker thread while release() is called
    from the event loop, so the outstanding set is lock-protected.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._outstanding: set[int] = set()
        self._next_id: int = 0
        self.acquired_count: int = 0
        self.released_count: int = 0

    @property
    def outstanding(self) -> int:
        """Frames acquired but not yet released."""
        with self._lock:
            return len(self._outstanding)

    def issue(self, data: bytes, timestamp: Optional[float] = None) -> Frame:
        """Wrap data in a new Frame and record it as outstanding."""
        with self._lock:
            frame_id = self._next_id
            self._next_id += 1
            self._outstanding.add(frame_id)
            self.acquired_count += 1
        return Frame(
            frame_id=frame_id,
            timestamp=time.time() if timestamp is None else timestamp,
            data=data,
        )

    def retire(self, frame: Frame) -> None:
        """Mark a frame as returned."""
        with self._lock:
            if frame.frame_id not in self._outstanding:
                if frame.frame_id < self._next_id:
                    raise FrameReleaseError(frame.frame_id, "already released")
                raise FrameReleaseError(frame.frame_id, "not issued by this source")
            self._outstanding.discard(frame.frame_id)
            self.released_count += 1

    def metrics(self) -> dict:
        with self._lock:
            return {
                "acquired": self.acquired_count,
                "released": self.released_count,
                "outstanding": len(self._outstanding),
            }


class MockFrameSource:
    """
    Deterministic synthetic camera.

    Renders a gradient with a moving bar using numpy and encodes it
    to JPEG with OpenCV, so the payload is a real image a browser
    can display. The frame_id drives the bar position, giving
    reproducible output across runs.

    Attributes:
        width: Image width in pixels
        height: Image height in pixels
        jpeg_quality: cv2.IMWRITE_JPEG_QUALITY value
        unavailable_every: Report Unavailable on every Nth acquire (0 = never)
    """

    def __init__(
        self,
        width: int = 320,
        height: int = 240,
        jpeg_quality: int = 80,
        unavailable_every: int = 0,
    ) -> None:
        self.width = width
        self.height = height
        self.jpeg_quality = jpeg_quality
        self.unavailable_every = unavailable_every

        self._leases = LeaseTracker()
        self._attempts: int = 0
        self._background = np.tile(
            np.linspace(0, 255, width, dtype=np.uint8),
            (height, 1),
        )

        logger.info(
            f"MockFrameSource initialized: {width}x{height}, "
            f"quality={jpeg_quality}, unavailable_every={unavailable_every}"
        )

    @property
    def outstanding(self) -> int:
        return self._leases.outstanding

    @property
    def released_count(self) -> int:
        return self._leases.released_count

    def acquire(self) -> Optional[Frame]:
        self._attempts += 1
        if self.unavailable_every and self._attempts % self.unavailable_every == 0:
            return None

        image = self._render(self._attempts)
        ok, encoded = cv2.imencode(
            ".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality]
        )
        if not ok:
            logger.warning("Mock JPEG encode failed")
            return None
        return self._leases.issue(encoded.tobytes())

    def release(self, frame: Frame) -> None:
        self._leases.retire(frame)

    def close(self) -> None:
        if self._leases.outstanding:
            logger.warning(
                f"MockFrameSource closed with {self._leases.outstanding} frames outstanding"
            )

    def metrics(self) -> dict:
        return self._leases.metrics()

    def _render(self, tick: int) -> np.ndarray:
        """Gradient background with a vertical bar that sweeps across."""
        image = cv2.cvtColor(self._background, cv2.COLOR_GRAY2BGR)
        bar_width = max(4, self.width // 16)
        x = (tick * 4) % self.width
        image[:, x:x + bar_width] = (0, 0, 255)
        return image


class OpenCVFrameSource:
    """
    Camera backend built on cv2.VideoCapture.

    The capture buffer is set to one frame so read() returns the
    newest frame instead of a stale queued one. Raw images are
    encoded to JPEG here; the rest of the pipeline only sees bytes.

    Attributes:
        device: Device index (as string, e.g. "0") or stream URL
        jpeg_quality: cv2.IMWRITE_JPEG_QUALITY value
    """

    def __init__(
        self,
        device: str = "0",
        width: int = 320,
        height: int = 240,
        jpeg_quality: int = 80,
    ) -> None:
        self.device = device
        self.jpeg_quality = jpeg_quality
        self._leases = LeaseTracker()

        target = int(device) if device.isdigit() else device
        self._capture = cv2.VideoCapture(target)
        if not self._capture.isOpened():
            raise CaptureError(f"Cannot open capture device: {device}")

        self._capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self._capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self._capture.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        logger.info(f"OpenCVFrameSource opened: device={device}, {width}x{height}")

    @property
    def outstanding(self) -> int:
        return self._leases.outstanding

    @property
    def released_count(self) -> int:
        return self._leases.released_count

    def acquire(self) -> Optional[Frame]:
        ok, image = self._capture.read()
        if not ok or image is None:
            return None

        ok, encoded = cv2.imencode(
            ".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), self.jpeg_quality]
        )
        if not ok:
            logger.warning("JPEG encode failed, treating frame as unavailable")
            return None
        return self._leases.issue(encoded.tobytes())

    def release(self, frame: Frame) -> None:
        self._leases.retire(frame)

    def close(self) -> None:
        self._capture.release()
        logger.info("OpenCVFrameSource closed")

    def metrics(self) -> dict:
        return self._leases.metrics()


def create_frame_source(config: CaptureConfig) -> FrameSource:
    """
    Create the frame source selected by config.

    Fails fast if the device cannot be opened.
    """
    if config.backend == "mock":
        logger.info("Using MockFrameSource")
        return MockFrameSource(
            width=config.width,
            height=config.height,
            jpeg_quality=config.jpeg_quality,
            unavailable_every=config.mock_unavailable_every,
        )

    elif config.backend == "opencv":
        logger.info(f"Using OpenCVFrameSource on {config.device}")
        return OpenCVFrameSource(
            device=config.device,
            width=config.width,
            height=config.height,
            jpeg_quality=config.jpeg_quality,
        )

    else:
        raise ValueError(f"Unknown capture backend: {config.backend}")
