"""
Data Models
===========

Enumerations and state models shared across framecast.

Models:
    Codes:
        - DropReason: Why a frame was released unsent
        - WriteOutcome: Result of a transport write
        - SessionEnd: Why a stream session ended

    State:
        - LinkState: Link health (NORMAL, DEGRADED, COOLDOWN)
        - AdaptiveSnapshot: Controller policy values and size statistics
"""

from framecast.models.codes import DropReason, SessionEnd, WriteOutcome
from framecast.models.state import AdaptiveSnapshot, LinkState

__all__ = [
    # Codes
    "DropReason",
    "WriteOutcome",
    "SessionEnd",
    # State
    "LinkState",
    "AdaptiveSnapshot",
]
