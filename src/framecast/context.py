"""
Streaming Context
=================

Everything the capture task and connection tasks share, built once at
startup and torn down once at shutdown.

Owns:
    - the FrameSource (single owner: only the capture path calls it)
    - the CaptureLoop, and its task in queued mode
    - the FrameQueue in queued mode
    - the ConnectionLifecycle (session slots, streaming-enabled flag)
    - the global stop event
    - the PresenceBeacon task, when enabled
"""

import asyncio
import logging
import time
from typing import Optional

from framecast.beacon import PresenceBeacon
from framecast.capture import CaptureLoop, FrameQueue, FrameSource, create_frame_source
from framecast.config import Settings
from framecast.stream.adaptive import AdaptiveController
from framecast.stream.encoder import StreamEncoder
from framecast.stream.feed import DirectFeed, FrameFeed, QueuedFeed
from framecast.stream.lifecycle import ConnectionLifecycle
from framecast.stream.session import StreamSession
from framecast.stream.transport import ChunkTransport


logger = logging.getLogger(__name__)


class StreamingContext:
    """
    Shared streaming state with explicit construction and teardown.

    Attributes:
        settings: Loaded configuration
        source: Camera backend
        capture: Capture path
        queue: Shared FrameQueue (queued mode only)
        lifecycle: Session admission and teardown
        stop_event: Set once when the service stops streaming

    Example:
        context = StreamingContext(settings)
        await context.start()
        ...
        await context.stop()
    """

    def __init__(
        self,
        settings: Settings,
        source: Optional[FrameSource] = None,
    ) -> None:
        self.settings = settings
        self.stop_event = asyncio.Event()
        self.started_at: float = 0.0

        self.source = source if source is not None else create_frame_source(settings.capture)

        self.queue: Optional[FrameQueue] = None
        max_sessions = settings.stream.max_sessions
        if self.queued:
            self.queue = FrameQueue(capacity=settings.stream.queue_capacity)
            # One consumer drains the shared queue.
            max_sessions = 1

        self.lifecycle = ConnectionLifecycle(
            max_sessions=max_sessions,
            source=self.source,
            queue=self.queue,
        )
        self.capture = CaptureLoop(
            self.source,
            settings.capture,
            stop_event=self.stop_event,
            is_enabled=lambda: self.streaming_enabled,
        )

        self.beacon: Optional[PresenceBeacon] = None
        if settings.beacon.enabled:
            self.beacon = PresenceBeacon(settings.beacon, stop_event=self.stop_event)

        self._capture_task: Optional[asyncio.Task] = None
        self._beacon_task: Optional[asyncio.Task] = None
        self._stopped: bool = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    @property
    def queued(self) -> bool:
        return self.settings.stream.mode == "queued"

    @property
    def streaming_enabled(self) -> bool:
        """True while at least one client is streaming and the service runs."""
        return self.lifecycle.streaming_enabled and not self.stop_event.is_set()

    async def start(self) -> None:
        """Start the capture task (queued mode) and the beacon."""
        self.started_at = time.time()
        self._loop = asyncio.get_running_loop()

        if self.queue is not None:
            self._capture_task = asyncio.create_task(
                self.capture.run(self.queue, self.settings.adaptive.max_frame_bytes),
                name="capture",
            )

        if self.beacon is not None:
            self._beacon_task = asyncio.create_task(self.beacon.run(), name="beacon")

        logger.info(
            f"Streaming context started: mode={self.settings.stream.mode}, "
            f"backend={self.settings.capture.backend}, "
            f"max_sessions={self.lifecycle.max_sessions}"
        )

    def request_stop(self) -> None:
        """
        Ask sessions and the capture task to wind down without waiting.

        Safe to call from a signal handler or another thread. Open
        streams end at their next suspension point.
        """
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._halt)

    def _halt(self) -> None:
        self.stop_event.set()
        self.capture.stop()

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Stop streaming globally and release every buffered frame.

        Sessions observe the stop event at their next suspension point.
        """
        if self._stopped:
            return
        self._stopped = True

        logger.info("Stopping streaming context...")
        self._halt()

        for task in (self._capture_task, self._beacon_task):
            if task is None:
                continue
            try:
                await asyncio.wait_for(task, timeout=timeout)
            except asyncio.TimeoutError:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

        drained = self.lifecycle.drain_queue()
        if drained:
            logger.info(f"Released {drained} queued frames on shutdown")

        self.source.close()
        logger.info("Streaming context stopped")

    def create_session(self, session_id: int, transport: ChunkTransport) -> StreamSession:
        """Build the session, controller and feed for one connection."""
        stream = self.settings.stream
        controller = AdaptiveController(self.settings.adaptive)

        feed: FrameFeed
        if self.queue is not None:
            feed = QueuedFeed(self.queue, self.source, controller)
            chunk_size = stream.queued_chunk_size
            status_log_every = stream.queued_status_log_every
        else:
            feed = DirectFeed(
                self.capture,
                controller,
                self.stop_event,
                unavailable_backoff=self.settings.capture.direct_unavailable_backoff_seconds,
            )
            chunk_size = stream.chunk_size
            status_log_every = stream.status_log_every

        encoder = StreamEncoder(
            boundary=stream.boundary,
            chunk_size=chunk_size,
            chunk_delay=stream.chunk_delay_seconds,
        )
        session = StreamSession(
            session_id=session_id,
            feed=feed,
            encoder=encoder,
            controller=controller,
            transport=transport,
            stop_event=self.stop_event,
            frame_wait=stream.frame_wait_seconds,
            status_log_every=status_log_every,
        )
        self.lifecycle.attach(session)
        return session

    def metrics(self) -> dict:
        """Aggregate counters for the /metrics endpoint."""
        data = {
            "mode": self.settings.stream.mode,
            "uptime_seconds": round(time.time() - self.started_at, 1) if self.started_at else 0.0,
            "streaming_enabled": self.streaming_enabled,
            "capture": self.capture.metrics.to_dict(),
            **self.lifecycle.metrics(),
        }
        source_metrics = getattr(self.source, "metrics", None)
        if callable(source_metrics):
            data["source"] = source_metrics()
        if self.queue is not None:
            data["queue"] = self.queue.metrics()
        if self.beacon is not None:
            data["beacon"] = self.beacon.metrics()
        return data
