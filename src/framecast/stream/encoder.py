"""
Stream Encoder
==============

multipart/x-mixed-replace framing for JPEG frames.

Wire format of one part:

    \\r\\n--<boundary>\\r\\n
    Content-Type: image/jpeg\\r\\n
    Content-Length: <n>\\r\\n
    \\r\\n
    <n bytes of JPEG, written in sub-chunks>

Each part replaces the previous one in the browser, which turns a
sequence of JPEGs into live video.

Design Rules:
    - Content-Length is the exact payload length
    - The first failed write aborts the rest of the frame; no retry
    - Payload sub-chunks are paced to avoid flooding a slow link
    - The encoder does not own frames; the caller releases them
"""

import asyncio
import logging
from dataclasses import dataclass

from framecast.capture.frame import Frame
from framecast.models import WriteOutcome
from framecast.stream.transport import ChunkTransport


logger = logging.getLogger(__name__)


DEFAULT_BOUNDARY = "123456789000000000000987654321"
KEEPALIVE_TOKEN = b"\r\n"
PART_HEADER = "Content-Type: image/jpeg\r\nContent-Length: {length}\r\n\r\n"


def stream_content_type(boundary: str = DEFAULT_BOUNDARY) -> str:
    """Content-Type header value for the /stream response."""
    return f"multipart/x-mixed-replace;boundary={boundary}"


def boundary_marker(boundary: str = DEFAULT_BOUNDARY) -> bytes:
    """Delimiter written before every part."""
    return f"\r\n--{boundary}\r\n".encode("ascii")


def part_header(length: int) -> bytes:
    """Header block for a JPEG part of `length` bytes."""
    return PART_HEADER.format(length=length).encode("ascii")


@dataclass(frozen=True, slots=True)
class FrameWrite:
    """
    Result of writing one frame.

    Attributes:
        outcome: OK, or the first failing write's outcome
        payload_started: True if the failure hit the JPEG bytes
            (boundary and header were already written)
        payload_bytes: Payload bytes accepted before completion/failure
    """

    outcome: WriteOutcome
    payload_started: bool = False
    payload_bytes: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome is WriteOutcome.OK


class StreamEncoder:
    """
    Writes frames as multipart parts onto a ChunkTransport.

    Attributes:
        boundary: Multipart boundary token
        chunk_size: Payload sub-chunk size in bytes
        chunk_delay: Pause between payload sub-chunks (seconds)
    """

    def __init__(
        self,
        boundary: str = DEFAULT_BOUNDARY,
        chunk_size: int = 2048,
        chunk_delay: float = 0.005,
    ) -> None:
        if chunk_size < 1:
            raise ValueError("chunk_size must be >= 1")

        self.boundary = boundary
        self.chunk_size = chunk_size
        self.chunk_delay = chunk_delay
        self._marker = boundary_marker(boundary)

    @property
    def content_type(self) -> str:
        return stream_content_type(self.boundary)

    async def write_frame(self, transport: ChunkTransport, frame: Frame) -> FrameWrite:
        """
        Write one frame as one multipart part.

        Args:
            transport: Client connection
            frame: Frame to write (still owned by the caller)

        Returns:
            FrameWrite describing how far the write got
        """
        outcome = await transport.send_chunk(self._marker)
        if outcome is not WriteOutcome.OK:
            logger.warning(f"Boundary write failed: {outcome.value}")
            return FrameWrite(outcome)

        outcome = await transport.send_chunk(part_header(len(frame.data)))
        if outcome is not WriteOutcome.OK:
            logger.warning(f"Header write failed: {outcome.value}")
            return FrameWrite(outcome)

        data = memoryview(frame.data)
        sent = 0
        while sent < len(data):
            piece = bytes(data[sent:sent + self.chunk_size])
            outcome = await transport.send_chunk(piece)
            if outcome is not WriteOutcome.OK:
                logger.warning(
                    f"Payload write failed at {sent}/{len(data)} bytes: {outcome.value}"
                )
                return FrameWrite(outcome, payload_started=True, payload_bytes=sent)
            sent += len(piece)
            if self.chunk_delay > 0:
                await asyncio.sleep(self.chunk_delay)

        return FrameWrite(WriteOutcome.OK, payload_started=True, payload_bytes=sent)

    async def write_keepalive(self, transport: ChunkTransport) -> WriteOutcome:
        """Write the keep-alive token between parts."""
        return await transport.send_chunk(KEEPALIVE_TOKEN)
