"""
Connection Lifecycle Tests
==========================

Session admission limits and queue cleanup on the last teardown.
"""

from types import SimpleNamespace

import pytest

from conftest import ScriptedFrameSource, run
from framecast.capture.queue import FrameQueue
from framecast.errors import SessionLimitError
from framecast.models import SessionEnd
from framecast.stream.lifecycle import ConnectionLifecycle


def stub_session(session_id: int, end_reason=None):
    return SimpleNamespace(
        session_id=session_id,
        end_reason=end_reason,
        to_dict=lambda: {"session_id": session_id},
    )


class TestAdmission:
    """Tests for admit() and retire()."""

    def test_admit_until_limit(self):
        lifecycle = ConnectionLifecycle(max_sessions=2, source=ScriptedFrameSource())

        first = lifecycle.admit()
        second = lifecycle.admit()

        assert (first, second) == (1, 2)
        assert lifecycle.active_count == 2
        with pytest.raises(SessionLimitError) as exc_info:
            lifecycle.admit()
        assert exc_info.value.limit == 2

    def test_retire_frees_slot(self):
        lifecycle = ConnectionLifecycle(max_sessions=1, source=ScriptedFrameSource())

        session_id = lifecycle.admit()
        lifecycle.retire(session_id)

        assert lifecycle.active_count == 0
        assert lifecycle.admit() == 2

    def test_streaming_enabled_follows_slots(self):
        lifecycle = ConnectionLifecycle(max_sessions=2, source=ScriptedFrameSource())
        assert not lifecycle.streaming_enabled

        session_id = lifecycle.admit()
        assert lifecycle.streaming_enabled

        lifecycle.retire(session_id)
        assert not lifecycle.streaming_enabled

    def test_retire_unknown_session_is_noop(self):
        lifecycle = ConnectionLifecycle(max_sessions=1, source=ScriptedFrameSource())
        lifecycle.retire(42)
        assert lifecycle.active_count == 0

    def test_end_reasons_are_counted(self):
        lifecycle = ConnectionLifecycle(max_sessions=2, source=ScriptedFrameSource())
        session_id = lifecycle.admit()
        lifecycle.attach(stub_session(session_id, SessionEnd.DISCONNECTED))

        assert lifecycle.metrics()["sessions"] == [{"session_id": session_id}]

        lifecycle.retire(session_id)

        metrics = lifecycle.metrics()
        assert metrics["sessions_ended"] == {"DISCONNECTED": 1}
        assert metrics["sessions"] == []


class TestQueueDrain:
    """Tests for releasing queued frames when streaming stops."""

    def test_last_session_drains_queue(self):
        source = ScriptedFrameSource()

        async def scenario():
            queue = FrameQueue(capacity=5)
            for _ in range(2):
                queue.try_push(source.acquire())
            lifecycle = ConnectionLifecycle(max_sessions=2, source=source, queue=queue)

            first = lifecycle.admit()
            second = lifecycle.admit()
            lifecycle.retire(first)
            size_after_first = queue.size
            lifecycle.retire(second)
            return lifecycle, queue, size_after_first

        lifecycle, queue, size_after_first = run(scenario())

        assert size_after_first == 2
        assert queue.size == 0
        assert source.outstanding == 0
        assert lifecycle.metrics()["queued_frames_drained"] == 2

    def test_drain_without_queue(self):
        lifecycle = ConnectionLifecycle(max_sessions=1, source=ScriptedFrameSource())
        assert lifecycle.drain_queue() == 0
