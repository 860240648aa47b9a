"""
Adaptive Controller
===================

Error-driven degradation policy for one stream session.

The controller is a small state machine over the session's
consecutive transient error count e:

    e == 0              NORMAL    baseline skip ratio, ceiling and delay
    0 < e < max_errors  DEGRADED  ceiling shrunk, slower pacing, short backoff
    e >= max_errors     COOLDOWN  long pause, then e resets to 0

Under a degrading link this trades frame size and rate for reliability
instead of oscillating between full load and full failure. The circuit
always closes again after the cooldown; it never gives up on an open
connection.

The controller never sleeps itself. It returns how long the caller
should pause, so the session can make the pause interruptible.
"""

import logging

from framecast.config import AdaptiveConfig
from framecast.models import AdaptiveSnapshot, LinkState


logger = logging.getLogger(__name__)


class AdaptiveController:
    """
    Per-session skip, size and pacing policy.

    Owned by exactly one StreamSession; no locking.

    Attributes:
        config: Policy thresholds and durations

    Example:
        controller = AdaptiveController(settings.adaptive)

        # After a failed write
        delay = controller.record_error(during_payload=True)
        await pause(stop_event, delay)
        if controller.cooling_down:
            controller.complete_cooldown()

        # After a fully sent frame
        delay = controller.record_success(len(frame))
    """

    def __init__(self, config: AdaptiveConfig) -> None:
        self.config = config

        self._error_count: int = 0
        self._cooling_down: bool = False
        self._cooldowns: int = 0

        self._frames_observed: int = 0
        self._mean_frame_bytes: float = 0.0
        self._peak_frame_bytes: int = 0

    # -------------------------------------------------------------------------
    # Derived policy
    # -------------------------------------------------------------------------

    @property
    def error_count(self) -> int:
        """Consecutive transient errors since the last good frame."""
        return self._error_count

    @property
    def cooling_down(self) -> bool:
        """True between reaching max_errors and complete_cooldown()."""
        return self._cooling_down

    @property
    def link_state(self) -> LinkState:
        if self._cooling_down:
            return LinkState.COOLDOWN
        if self._error_count > 0:
            return LinkState.DEGRADED
        return LinkState.NORMAL

    @property
    def skip_ratio(self) -> int:
        """Forward every Nth frame; rises once errors repeat."""
        if self._error_count > 1:
            return self.config.degraded_skip_ratio
        return self.config.skip_ratio

    @property
    def max_frame_bytes(self) -> int:
        """Frame size ceiling; tightened while any error is pending."""
        if self._error_count > 0:
            return int(self.config.max_frame_bytes * self.config.degraded_size_factor)
        return self.config.max_frame_bytes

    @property
    def frame_delay(self) -> float:
        """Pause after a successful frame at the current error count."""
        if self._error_count > 0:
            return self.config.degraded_frame_delay_seconds
        return self.config.frame_delay_seconds

    # -------------------------------------------------------------------------
    # Events
    # -------------------------------------------------------------------------

    def record_success(self, frame_bytes: int) -> float:
        """
        Record a fully sent frame and reset the error count.

        The returned delay is taken from the error count BEFORE the
        reset, so the first frame after a bad patch is still paced
        at the degraded rate.

        Args:
            frame_bytes: Payload size of the frame just sent

        Returns:
            Seconds to wait before the next frame
        """
        delay = self.frame_delay
        self._observe(frame_bytes)

        if self._error_count:
            logger.debug(f"Link recovered after {self._error_count} errors")
        self._error_count = 0
        return delay

    def record_error(self, during_payload: bool = False) -> float:
        """
        Record a transient write error.

        Args:
            during_payload: True if the failure hit the JPEG payload
                rather than the boundary/header (or a keep-alive)

        Returns:
            Seconds to pause before the next attempt. When the error
            count reaches max_errors this is the cooldown duration and
            cooling_down becomes True until complete_cooldown().
        """
        self._error_count += 1

        if self._error_count >= self.config.max_errors:
            self._cooling_down = True
            self._cooldowns += 1
            logger.info(
                f"Too many errors ({self._error_count}), "
                f"pausing {self.config.cooldown_seconds}s before retrying"
            )
            return self.config.cooldown_seconds

        if during_payload:
            return self.config.payload_backoff_seconds
        return self.config.framing_backoff_seconds

    def complete_cooldown(self) -> None:
        """Close the circuit: reset the error count and restore baseline policy."""
        self._error_count = 0
        self._cooling_down = False

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def _observe(self, frame_bytes: int) -> None:
        self._frames_observed += 1
        if self._frames_observed == 1:
            self._mean_frame_bytes = float(frame_bytes)
        else:
            alpha = self.config.size_smoothing_alpha
            self._mean_frame_bytes = alpha * frame_bytes + (1 - alpha) * self._mean_frame_bytes
        self._peak_frame_bytes = max(self._peak_frame_bytes, frame_bytes)

    def snapshot(self) -> AdaptiveSnapshot:
        """Current policy values and size statistics."""
        return AdaptiveSnapshot(
            link_state=self.link_state,
            error_count=self._error_count,
            skip_ratio=self.skip_ratio,
            max_frame_bytes=self.max_frame_bytes,
            frame_delay=self.frame_delay,
            frames_observed=self._frames_observed,
            mean_frame_bytes=round(self._mean_frame_bytes, 1),
            peak_frame_bytes=self._peak_frame_bytes,
            cooldowns=self._cooldowns,
        )
