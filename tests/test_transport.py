"""
Chunk Transport Tests
=====================

ASGI write error classification and disconnect detection.
"""

import asyncio

import pytest

from conftest import run
from framecast.models import WriteOutcome
from framecast.stream.transport import AsgiChunkTransport


class FakeConnection:
    """Records ASGI messages; body sends can be made to raise or stall."""

    def __init__(self, body_error=None, body_delay: float = 0.0) -> None:
        self.messages = []
        self.body_error = body_error
        self.body_delay = body_delay
        self.disconnect = None

    async def send(self, message: dict) -> None:
        if message["type"] == "http.response.body" and message.get("more_body"):
            if self.body_delay:
                await asyncio.sleep(self.body_delay)
            if self.body_error is not None:
                raise self.body_error
        self.messages.append(message)

    async def receive(self) -> dict:
        if self.disconnect is None:
            self.disconnect = asyncio.Event()
        await self.disconnect.wait()
        return {"type": "http.disconnect"}

    @property
    def bodies(self) -> list:
        return [m for m in self.messages if m["type"] == "http.response.body"]


class TestResponseStart:
    """Tests for headers and response start."""

    def test_begin_sends_content_type_first(self):
        connection = FakeConnection()

        async def scenario():
            transport = AsgiChunkTransport(connection.send, connection.receive)
            transport.set_header("Pragma", "no-cache")
            outcome = await transport.begin("multipart/x-mixed-replace;boundary=x")
            await transport.close()
            return outcome

        assert run(scenario()) is WriteOutcome.OK
        start = connection.messages[0]
        assert start["type"] == "http.response.start"
        assert start["status"] == 200
        assert start["headers"] == [
            (b"content-type", b"multipart/x-mixed-replace;boundary=x"),
            (b"pragma", b"no-cache"),
        ]

    def test_headers_locked_after_begin(self):
        connection = FakeConnection()

        async def scenario():
            transport = AsgiChunkTransport(connection.send, connection.receive)
            await transport.begin("text/plain")
            try:
                with pytest.raises(RuntimeError):
                    transport.set_header("X-Late", "1")
            finally:
                await transport.close()

        run(scenario())

    def test_close_terminates_body(self):
        connection = FakeConnection()

        async def scenario():
            transport = AsgiChunkTransport(connection.send, connection.receive)
            await transport.begin("text/plain")
            await transport.send_chunk(b"abc")
            await transport.close()
            return transport

        transport = run(scenario())

        assert transport.bytes_sent == 3
        assert connection.bodies[-1] == {
            "type": "http.response.body",
            "body": b"",
            "more_body": False,
        }


class TestClassification:
    """Tests for WriteOutcome classification."""

    @pytest.mark.parametrize("error", [
        ConnectionResetError(104, "Connection reset by peer"),
        BrokenPipeError(32, "Broken pipe"),
    ])
    def test_connection_errors_are_disconnects(self, error):
        connection = FakeConnection(body_error=error)

        async def scenario():
            transport = AsgiChunkTransport(connection.send, connection.receive)
            await transport.begin("text/plain")
            first = await transport.send_chunk(b"abc")
            connection.body_error = None
            second = await transport.send_chunk(b"abc")
            await transport.close()
            return transport, first, second

        transport, first, second = run(scenario())

        assert first is WriteOutcome.DISCONNECTED
        # Once disconnected the connection is not touched again
        assert second is WriteOutcome.DISCONNECTED
        assert transport.disconnected
        assert connection.bodies == []

    def test_other_os_errors_are_transient(self):
        connection = FakeConnection(body_error=OSError(11, "Resource temporarily unavailable"))

        async def scenario():
            transport = AsgiChunkTransport(connection.send, connection.receive)
            await transport.begin("text/plain")
            outcome = await transport.send_chunk(b"abc")
            await transport.close()
            return transport, outcome

        transport, outcome = run(scenario())

        assert outcome is WriteOutcome.TRANSIENT
        assert not transport.disconnected

    def test_slow_write_is_transient(self):
        connection = FakeConnection(body_delay=1.0)

        async def scenario():
            transport = AsgiChunkTransport(connection.send, connection.receive, send_timeout=0.01)
            await transport.begin("text/plain")
            outcome = await transport.send_chunk(b"abc")
            await transport.close()
            return outcome

        assert run(scenario()) is WriteOutcome.TRANSIENT

    def test_http_disconnect_is_observed(self):
        connection = FakeConnection()

        async def scenario():
            connection.disconnect = asyncio.Event()
            transport = AsgiChunkTransport(connection.send, connection.receive)
            await transport.begin("text/plain")
            connection.disconnect.set()
            await asyncio.sleep(0.01)
            outcome = await transport.send_chunk(b"abc")
            await transport.close()
            return outcome

        assert run(scenario()) is WriteOutcome.DISCONNECTED
        # No final body after the client left
        assert connection.bodies == []
