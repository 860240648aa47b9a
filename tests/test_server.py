"""
Server Runner Tests
===================

Exit handling of the uvicorn server that hosts the app.
"""

import asyncio
import signal

import uvicorn

from conftest import KB, ScriptedFrameSource, run
from framecast.main import create_app
from framecast.server import StreamingServer
from framecast.stream.response import MultipartStreamResponse


class TestStreamingServer:
    """Tests for StreamingServer.handle_exit()."""

    def test_exit_signal_ends_open_stream(self, fast_settings):
        """A viewer that never leaves does not hold up shutdown."""
        source = ScriptedFrameSource(tail_size=1 * KB)
        app = create_app(fast_settings, source=source)
        server = StreamingServer(uvicorn.Config(app), app)

        async def scenario():
            messages = []

            async def send(message):
                messages.append(message)

            async def receive():
                await asyncio.Event().wait()

            async with app.router.lifespan_context(app):
                context = app.state.context
                session_id = context.lifecycle.admit()
                response = MultipartStreamResponse(context, session_id)
                task = asyncio.create_task(response({"type": "http"}, receive, send))

                await asyncio.sleep(0.05)
                server.handle_exit(signal.SIGINT, None)
                await asyncio.wait_for(task, timeout=2.0)

                stopped = context.stop_event.is_set()
                active = context.lifecycle.active_count

            return messages, stopped, active

        messages, stopped, active = run(scenario())

        assert server.should_exit is True
        assert stopped is True
        assert active == 0
        assert messages[-1] == {"type": "http.response.body", "body": b"", "more_body": False}
        assert source.outstanding == 0
        assert source.closed is True

    def test_exit_before_startup(self, fast_settings):
        app = create_app(fast_settings, source=ScriptedFrameSource())
        server = StreamingServer(uvicorn.Config(app), app)

        server.handle_exit(signal.SIGTERM, None)

        assert server.should_exit is True
