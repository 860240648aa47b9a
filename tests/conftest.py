"""
Test Configuration
==================

Pytest fixtures and test doubles for framecast.
"""

import asyncio
from typing import Iterable, Optional

import pytest

from framecast.capture.frame import Frame
from framecast.capture.source import LeaseTracker
from framecast.config import Settings
from framecast.models import WriteOutcome


KB = 1024


class ScriptedFrameSource:
    """
    FrameSource that hands out frames of scripted sizes.

    None in the script means "Unavailable" for that acquire. Once the
    script is exhausted it keeps returning frames of `tail_size`
    bytes, or None when tail_size is None.
    """

    def __init__(self, sizes: Iterable[Optional[int]] = (), tail_size: Optional[int] = 1 * KB) -> None:
        self._script = list(sizes)
        self.tail_size = tail_size
        self.leases = LeaseTracker()
        self.closed = False

    @property
    def outstanding(self) -> int:
        return self.leases.outstanding

    @property
    def acquired_count(self) -> int:
        return self.leases.acquired_count

    @property
    def released_count(self) -> int:
        return self.leases.released_count

    def acquire(self) -> Optional[Frame]:
        size = self._script.pop(0) if self._script else self.tail_size
        if size is None:
            return None
        return self.leases.issue(bytes([0xFF]) * size)

    def release(self, frame: Frame) -> None:
        self.leases.retire(frame)

    def close(self) -> None:
        self.closed = True

    def metrics(self) -> dict:
        return self.leases.metrics()


class ScriptedTransport:
    """
    ChunkTransport that records writes and replays scripted outcomes.

    `outcomes` maps the zero-based index of a send_chunk call to the
    outcome returned for it; every other call succeeds.
    """

    def __init__(self, outcomes: Optional[dict[int, WriteOutcome]] = None) -> None:
        self.outcomes = outcomes or {}
        self.calls = 0
        self.chunks: list[bytes] = []

    async def send_chunk(self, data: bytes) -> WriteOutcome:
        index = self.calls
        self.calls += 1
        outcome = self.outcomes.get(index, WriteOutcome.OK)
        if outcome is WriteOutcome.OK:
            self.chunks.append(data)
        return outcome

    @property
    def body(self) -> bytes:
        return b"".join(self.chunks)


def make_frame(size: int, frame_id: int = 0) -> Frame:
    return Frame(frame_id=frame_id, timestamp=1700000000.0, data=bytes([0xAB]) * size)


def run(coro):
    """Run a coroutine to completion in a fresh event loop."""
    return asyncio.run(coro)


@pytest.fixture
def fast_settings() -> Settings:
    """Settings with every delay shrunk so tests run quickly."""
    return Settings.model_validate({
        "capture": {
            "idle_interval_seconds": 0.01,
            "unavailable_backoff_seconds": 0.0,
            "direct_unavailable_backoff_seconds": 0.0,
            "filtered_pause_seconds": 0.0,
            "capture_interval_seconds": 0.0,
        },
        "stream": {
            "chunk_size": 1024,
            "chunk_delay_seconds": 0.0,
            "frame_wait_seconds": 0.05,
            "send_timeout_seconds": 0.5,
        },
        "adaptive": {
            "frame_delay_seconds": 0.0,
            "degraded_frame_delay_seconds": 0.0,
            "framing_backoff_seconds": 0.0,
            "payload_backoff_seconds": 0.0,
            "cooldown_seconds": 0.01,
        },
    })


@pytest.fixture
def scripted_source():
    """Factory for ScriptedFrameSource."""
    return ScriptedFrameSource
