"""
Stream Session
==============

The per-connection streaming loop.

One StreamSession serves one /stream request:

    next frame (bounded wait)
      |-- none     -> keep-alive token
      |-- frame    -> encoder.write_frame -> release frame
                        |-- OK           -> controller.record_success, pace
                        |-- TRANSIENT    -> controller.record_error, back off
                        |                   (cooldown when the circuit opens)
                        |-- DISCONNECTED -> end session

Design Rules:
    - Session state is touched only by the task running the session
    - Only a disconnect, a global stop or task teardown ends the loop
    - A frame held when the loop ends is released exactly once
"""

import asyncio
import logging
from typing import Optional

from framecast.capture.frame import Frame
from framecast.models import DropReason, SessionEnd, WriteOutcome
from framecast.pacing import pause
from framecast.stream.adaptive import AdaptiveController
from framecast.stream.encoder import StreamEncoder
from framecast.stream.feed import FrameFeed
from framecast.stream.transport import ChunkTransport


logger = logging.getLogger(__name__)


class SessionMetrics:
    """Metrics for StreamSession observability."""

    __slots__ = (
        "frames_sent",
        "frames_failed",
        "frames_torn_down",
        "keepalives_sent",
        "transient_errors",
        "cooldowns",
        "bytes_sent",
    )

    def __init__(self) -> None:
        self.frames_sent: int = 0
        self.frames_failed: int = 0
        self.frames_torn_down: int = 0
        self.keepalives_sent: int = 0
        self.transient_errors: int = 0
        self.cooldowns: int = 0
        self.bytes_sent: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "frames_sent": self.frames_sent,
            "frames_failed": self.frames_failed,
            "frames_torn_down": self.frames_torn_down,
            "keepalives_sent": self.keepalives_sent,
            "transient_errors": self.transient_errors,
            "cooldowns": self.cooldowns,
            "bytes_sent": self.bytes_sent,
        }


class StreamSession:
    """
    Streaming loop for one client connection.

    Attributes:
        session_id: Identifier used in logs and metrics
        feed: Frame supply (direct or queued)
        encoder: Multipart writer
        controller: Adaptive policy for this session
        transport: Client connection
        metrics: Operational metrics
        end_reason: Why run() returned (None while running)

    Example:
        session = StreamSession(1, feed, encoder, controller, transport, stop_event)
        reason = await session.run()
    """

    def __init__(
        self,
        session_id: int,
        feed: FrameFeed,
        encoder: StreamEncoder,
        controller: AdaptiveController,
        transport: ChunkTransport,
        stop_event: asyncio.Event,
        frame_wait: float = 1.0,
        status_log_every: int = 20,
    ) -> None:
        self.session_id = session_id
        self.feed = feed
        self.encoder = encoder
        self.controller = controller
        self.transport = transport
        self.frame_wait = frame_wait
        self.status_log_every = status_log_every

        self.metrics = SessionMetrics()
        self.end_reason: Optional[SessionEnd] = None

        self._stop_event = stop_event
        self._held: Optional[Frame] = None

    @property
    def frames_dropped(self) -> int:
        """Frames this session released without sending them."""
        return sum(self.feed.dropped.values())

    async def run(self) -> SessionEnd:
        """
        Stream until the client disconnects or the service stops.

        Returns:
            SessionEnd reason
        """
        logger.info(f"Session {self.session_id}: stream started")

        try:
            self.end_reason = await self._loop()
        except asyncio.CancelledError:
            self.end_reason = SessionEnd.CANCELLED
            raise
        finally:
            self._release_held()
            logger.info(
                f"Session {self.session_id}: stream ended "
                f"({self.end_reason.value if self.end_reason else 'error'}), "
                f"sent {self.metrics.frames_sent} frames, "
                f"dropped {self.frames_dropped} frames"
            )

        return self.end_reason

    async def _loop(self) -> SessionEnd:
        while not self._stop_event.is_set():
            frame = await self.feed.next_frame(self.frame_wait)

            if frame is None:
                if self._stop_event.is_set():
                    break
                outcome = await self.encoder.write_keepalive(self.transport)
                if outcome is WriteOutcome.DISCONNECTED:
                    return SessionEnd.DISCONNECTED
                if outcome is WriteOutcome.OK:
                    self.metrics.keepalives_sent += 1
                elif await self._back_off(during_payload=False):
                    break
                continue

            self._held = frame
            result = await self.encoder.write_frame(self.transport, frame)
            self._held = None
            self.feed.release(frame)

            if result.ok:
                self.metrics.frames_sent += 1
                self.metrics.bytes_sent += len(frame)
                delay = self.controller.record_success(len(frame))
                self._log_status()
                if await pause(self._stop_event, delay):
                    break
                continue

            self.metrics.frames_failed += 1

            if result.outcome is WriteOutcome.DISCONNECTED:
                logger.info(f"Session {self.session_id}: client disconnected, ending stream")
                return SessionEnd.DISCONNECTED

            if await self._back_off(during_payload=result.payload_started):
                break

        return SessionEnd.STOPPED

    async def _back_off(self, during_payload: bool) -> bool:
        """
        Apply the controller's backoff after a transient error.

        Returns:
            True if the stop event fired during the pause.
        """
        self.metrics.transient_errors += 1
        delay = self.controller.record_error(during_payload=during_payload)
        logger.warning(
            f"Session {self.session_id}: transient write error "
            f"(error count: {self.controller.error_count})"
        )

        stopped = await pause(self._stop_event, delay)
        if self.controller.cooling_down:
            self.metrics.cooldowns += 1
            self.controller.complete_cooldown()
        return stopped

    def _release_held(self) -> None:
        if self._held is None:
            return
        frame, self._held = self._held, None
        self.feed.release(frame)
        self.feed.dropped[DropReason.TEARDOWN] += 1
        self.metrics.frames_torn_down += 1

    def _log_status(self) -> None:
        if self.metrics.frames_sent % self.status_log_every == 0:
            logger.info(
                f"Session {self.session_id}: sent {self.metrics.frames_sent} frames, "
                f"dropped {self.frames_dropped}, errors {self.controller.error_count}"
            )

    def to_dict(self) -> dict:
        """Session metrics plus the controller snapshot."""
        return {
            "session_id": self.session_id,
            "frames_dropped": self.frames_dropped,
            **self.metrics.to_dict(),
            "adaptive": self.controller.snapshot().model_dump(mode="json"),
        }
