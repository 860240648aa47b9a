"""
Adaptive State Models
=====================

State representation for the per-session adaptive controller.

Core Concepts:
    - LinkState: Discrete link health (NORMAL, DEGRADED, COOLDOWN)
    - AdaptiveSnapshot: Derived policy values plus frame size statistics

Transitions (driven by the consecutive error count e):
    NORMAL   -> DEGRADED: first transient write error (e > 0)
    DEGRADED -> COOLDOWN: e reaches max_errors
    COOLDOWN -> NORMAL:   cooldown pause completed, e reset to 0
    DEGRADED -> NORMAL:   any fully successful frame send
"""

from enum import Enum

from pydantic import BaseModel, Field


class LinkState(str, Enum):
    """
    Discrete link health for one stream session.

    Attributes:
        NORMAL: No recent errors, baseline policy
        DEGRADED: Some consecutive errors, tightened ceiling and slower pacing
        COOLDOWN: Error threshold reached, pausing before a reset
    """

    NORMAL = "NORMAL"
    DEGRADED = "DEGRADED"
    COOLDOWN = "COOLDOWN"


class AdaptiveSnapshot(BaseModel):
    """
    Point-in-time view of an AdaptiveController.

    All policy values are pure functions of error_count; the size
    statistics only describe what has been sent so far.

    Attributes:
        link_state: Current link health
        error_count: Consecutive transient errors
        skip_ratio: Forward every Nth captured frame
        max_frame_bytes: Current frame size ceiling
        frame_delay: Pause after a successful frame (seconds)
        frames_observed: Frames whose size has been recorded
        mean_frame_bytes: Exponential moving average of frame size
        peak_frame_bytes: Largest frame recorded
        cooldowns: Number of cooldown pauses taken
    """

    link_state: LinkState = Field(default=LinkState.NORMAL)
    error_count: int = Field(default=0, ge=0)
    skip_ratio: int = Field(default=2, ge=1)
    max_frame_bytes: int = Field(default=25 * 1024, ge=1)
    frame_delay: float = Field(default=0.05, ge=0)
    frames_observed: int = Field(default=0, ge=0)
    mean_frame_bytes: float = Field(default=0.0, ge=0)
    peak_frame_bytes: int = Field(default=0, ge=0)
    cooldowns: int = Field(default=0, ge=0)
