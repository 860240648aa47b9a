"""
Outcome Codes
=============

Fixed sets of machine-readable codes used across the pipeline.

Rules:
    - One code per cause
    - Codes are counted, never raised
"""

from enum import Enum


class DropReason(str, Enum):
    """
    Why a captured frame was released without being sent.

    Attributes:
        SKIPPED: Filtered out by the frame-skip ratio
        OVERSIZE: Larger than the current size ceiling
        QUEUE_FULL: Rejected by a full FrameQueue (drop-newest)
        TEARDOWN: Still held or queued when a session ended
    """

    SKIPPED = "SKIPPED"
    OVERSIZE = "OVERSIZE"
    QUEUE_FULL = "QUEUE_FULL"
    TEARDOWN = "TEARDOWN"


class WriteOutcome(str, Enum):
    """
    Result of a single write to a client connection.

    Attributes:
        OK: Bytes were handed to the transport
        DISCONNECTED: The peer is gone; the session must end
        TRANSIENT: The write failed but the connection is presumed alive
    """

    OK = "OK"
    DISCONNECTED = "DISCONNECTED"
    TRANSIENT = "TRANSIENT"


class SessionEnd(str, Enum):
    """
    Why a stream session loop exited.

    Attributes:
        DISCONNECTED: A disconnect-class write error
        STOPPED: The service is shutting the stream down
        CANCELLED: The serving task was torn down
    """

    DISCONNECTED = "DISCONNECTED"
    STOPPED = "STOPPED"
    CANCELLED = "CANCELLED"
