"""
Connection Lifecycle
====================

Admission and teardown of stream sessions.

A session occupies a slot from admit() until retire(). Streaming is
enabled while at least one slot is taken; the capture task checks
this on every iteration. When the last session leaves, frames still
sitting in the shared queue are drained and released, since they are
stale for whoever connects next.
"""

import logging
from collections import Counter
from typing import Optional

from framecast.capture.queue import FrameQueue
from framecast.capture.source import FrameSource
from framecast.errors import SessionLimitError
from framecast.stream.session import StreamSession


logger = logging.getLogger(__name__)


class ConnectionLifecycle:
    """
    Tracks active stream sessions.

    Attributes:
        max_sessions: Concurrent session limit
        source: Frame source that queued frames are released to
        queue: Shared queue in queued mode, None in direct mode

    Example:
        session_id = lifecycle.admit()      # may raise SessionLimitError
        try:
            lifecycle.attach(session)
            await session.run()
        finally:
            lifecycle.retire(session_id)
    """

    def __init__(
        self,
        max_sessions: int,
        source: FrameSource,
        queue: Optional[FrameQueue] = None,
    ) -> None:
        self.max_sessions = max_sessions
        self.source = source
        self.queue = queue

        self._slots: set[int] = set()
        self._sessions: dict[int, StreamSession] = {}
        self._next_id: int = 1
        self._ended: Counter = Counter()
        self._drained_total: int = 0

    @property
    def active_count(self) -> int:
        return len(self._slots)

    @property
    def streaming_enabled(self) -> bool:
        """True while any client holds a stream session."""
        return bool(self._slots)

    def admit(self) -> int:
        """
        Reserve a session slot.

        Returns:
            New session id

        Raises:
            SessionLimitError: all slots are taken
        """
        if len(self._slots) >= self.max_sessions:
            raise SessionLimitError(self.max_sessions)

        session_id = self._next_id
        self._next_id += 1
        self._slots.add(session_id)
        logger.info(f"Session {session_id} admitted ({len(self._slots)}/{self.max_sessions})")
        return session_id

    def attach(self, session: StreamSession) -> None:
        """Register the running session for metrics."""
        self._sessions[session.session_id] = session

    def retire(self, session_id: int) -> None:
        """
        Free a session slot.

        Drains the shared queue when the last session leaves.
        """
        if session_id not in self._slots:
            return
        self._slots.discard(session_id)

        session = self._sessions.pop(session_id, None)
        if session is not None and session.end_reason is not None:
            self._ended[session.end_reason] += 1

        if not self._slots:
            drained = self.drain_queue()
            if drained:
                logger.info(f"Released {drained} queued frames after last session ended")

    def drain_queue(self) -> int:
        """
        Release every frame left in the shared queue.

        Returns:
            Number of frames released
        """
        if self.queue is None:
            return 0
        frames = self.queue.drain()
        for frame in frames:
            self.source.release(frame)
        self._drained_total += len(frames)
        return len(frames)

    def sessions(self) -> list[StreamSession]:
        return list(self._sessions.values())

    def metrics(self) -> dict:
        return {
            "active_sessions": self.active_count,
            "max_sessions": self.max_sessions,
            "sessions_ended": {reason.value: count for reason, count in self._ended.items()},
            "queued_frames_drained": self._drained_total,
            "sessions": [session.to_dict() for session in self._sessions.values()],
        }
