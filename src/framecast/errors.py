"""
Exceptions
==========

Exception hierarchy for framecast.

Most runtime faults in the streaming pipeline are absorbed and counted
rather than raised (see capture.loop and stream.session). The exceptions
here cover the cases that must surface: ownership violations, backends
that cannot be opened, and session admission.
"""


class FramecastError(Exception):
    """Base class for all framecast errors."""


class FrameReleaseError(FramecastError):
    """A frame was released twice, or released to a source that never issued it."""

    def __init__(self, frame_id: int, reason: str) -> None:
        self.frame_id = frame_id
        self.reason = reason
        super().__init__(f"Cannot release frame {frame_id}: {reason}")


class CaptureError(FramecastError):
    """The capture backend could not be opened or configured."""


class SessionLimitError(FramecastError):
    """Raised when a new stream session would exceed the configured limit."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(f"Maximum concurrent stream sessions reached ({limit})")
