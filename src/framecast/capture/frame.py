"""
Frame Data Model
================

Internal frame representation for the capture and streaming pipeline.

Design Rules:
    - A Frame is immutable once created
    - Ownership moves between stages; a Frame is never held by two stages
    - Every Frame handed out by a FrameSource goes back to it exactly once
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Frame:
    """
    One captured JPEG image.

    Frozen so no stage can rewrite the payload while another
    stage still expects the original bytes.

    Attributes:
        frame_id: Monotonically increasing counter assigned by the source
        timestamp: UNIX timestamp when the frame was captured
        data: Encoded JPEG bytes
    """

    frame_id: int
    timestamp: float
    data: bytes

    def __len__(self) -> int:
        return len(self.data)

    @property
    def size(self) -> int:
        """Payload length in bytes."""
        return len(self.data)

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the payload."""
        return (
            f"Frame(frame_id={self.frame_id}, "
            f"timestamp={self.timestamp:.3f}, "
            f"size={len(self.data)})"
        )
