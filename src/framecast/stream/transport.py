"""
Chunk Transport
===============

Incremental response writer with error classification.

This module adapts an ASGI (send, receive) pair to the small write
interface the encoder needs, and turns every write into a
WriteOutcome instead of an exception:

    OK            bytes handed to the server
    DISCONNECTED  peer is gone (reset, broken pipe, closed stream,
                  or http.disconnect seen on the receive channel)
    TRANSIENT     anything else, including a write slower than the
                  send timeout

The response is sent without a Content-Length, so the server uses
chunked transfer encoding.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

import anyio
from starlette.requests import ClientDisconnect

from framecast.models import WriteOutcome


logger = logging.getLogger(__name__)


Message = dict
Send = Callable[[Message], Awaitable[None]]
Receive = Callable[[], Awaitable[Message]]


DISCONNECT_ERRORS = (
    ConnectionError,
    ClientDisconnect,
    anyio.BrokenResourceError,
    anyio.ClosedResourceError,
)


class ChunkTransport(Protocol):
    """
    Write side of one client connection.

    The encoder only depends on this protocol, so tests can script
    outcomes without an HTTP server.
    """

    async def send_chunk(self, data: bytes) -> WriteOutcome:
        """Write bytes; never raises for network faults."""
        ...


class AsgiChunkTransport:
    """
    ChunkTransport over an ASGI connection.

    A watcher task drains the receive channel so an http.disconnect
    is noticed even while the session is only writing. Once a
    disconnect is observed every further send_chunk() reports
    DISCONNECTED without touching the connection.

    Attributes:
        send_timeout: Seconds a single write may take before it is
            abandoned as TRANSIENT
        bytes_sent: Total bytes accepted by the server
    """

    def __init__(
        self,
        send: Send,
        receive: Receive,
        send_timeout: float = 5.0,
    ) -> None:
        self._send = send
        self._receive = receive
        self.send_timeout = send_timeout

        self._headers: list[tuple[bytes, bytes]] = []
        self._started: bool = False
        self._closed: bool = False
        self._disconnected = asyncio.Event()
        self._watcher: Optional[asyncio.Task] = None

        self.bytes_sent: int = 0

    @property
    def disconnected(self) -> bool:
        return self._disconnected.is_set()

    def set_header(self, name: str, value: str) -> None:
        """Add a response header. Only valid before begin()."""
        if self._started:
            raise RuntimeError("Response already started")
        self._headers.append((name.lower().encode("latin-1"), value.encode("latin-1")))

    async def begin(self, content_type: str, status_code: int = 200) -> WriteOutcome:
        """
        Send the status line and headers and start watching for disconnects.

        Args:
            content_type: Value of the Content-Type header
            status_code: HTTP status

        Returns:
            WriteOutcome of sending the response start
        """
        self._headers.insert(0, (b"content-type", content_type.encode("latin-1")))
        self._started = True

        outcome = await self._guarded_send({
            "type": "http.response.start",
            "status": status_code,
            "headers": self._headers,
        })
        if outcome is WriteOutcome.OK:
            self._watcher = asyncio.create_task(
                self._watch_disconnect(),
                name="disconnect_watcher",
            )
        return outcome

    async def send_chunk(self, data: bytes) -> WriteOutcome:
        """
        Write one piece of the body.

        Returns:
            WriteOutcome; never raises for network faults
        """
        if self._disconnected.is_set():
            return WriteOutcome.DISCONNECTED

        outcome = await self._guarded_send({
            "type": "http.response.body",
            "body": data,
            "more_body": True,
        })
        if outcome is WriteOutcome.OK:
            if self._disconnected.is_set():
                return WriteOutcome.DISCONNECTED
            self.bytes_sent += len(data)
        return outcome

    async def close(self) -> None:
        """Stop the watcher and terminate the body if the peer is still there."""
        if self._closed:
            return
        self._closed = True

        if self._watcher is not None:
            self._watcher.cancel()
            try:
                await self._watcher
            except asyncio.CancelledError:
                pass
            self._watcher = None

        if self._started and not self._disconnected.is_set():
            outcome = await self._guarded_send({
                "type": "http.response.body",
                "body": b"",
                "more_body": False,
            })
            if outcome is not WriteOutcome.OK:
                logger.debug(f"Final body write not delivered: {outcome.value}")

    async def _guarded_send(self, message: Message) -> WriteOutcome:
        try:
            await asyncio.wait_for(self._send(message), timeout=self.send_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Write timed out after {self.send_timeout}s")
            return WriteOutcome.TRANSIENT
        except DISCONNECT_ERRORS as e:
            logger.info(f"Client disconnected: {type(e).__name__}")
            self._disconnected.set()
            return WriteOutcome.DISCONNECTED
        except OSError as e:
            logger.warning(f"Write failed: {e}")
            return WriteOutcome.TRANSIENT
        return WriteOutcome.OK

    async def _watch_disconnect(self) -> None:
        while True:
            message = await self._receive()
            if message["type"] == "http.disconnect":
                self._disconnected.set()
                return
