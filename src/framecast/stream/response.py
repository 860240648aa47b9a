"""
Multipart Stream Response
=========================

ASGI response that runs a StreamSession for the lifetime of the request.

StreamingResponse pulls from an iterator and hides write failures;
this response writes through AsgiChunkTransport instead, so every
write produces a WriteOutcome the session can react to.
"""

import logging
from typing import TYPE_CHECKING

from starlette.responses import Response
from starlette.types import Receive, Scope, Send

from framecast.models import WriteOutcome
from framecast.stream.encoder import stream_content_type
from framecast.stream.transport import AsgiChunkTransport

if TYPE_CHECKING:
    from framecast.context import StreamingContext


logger = logging.getLogger(__name__)


def stream_headers(idle_seconds: int, max_requests: int) -> dict[str, str]:
    """Response headers for /stream besides Content-Type."""
    return {
        "Access-Control-Allow-Origin": "*",
        "Cache-Control": "no-cache, no-store, must-revalidate",
        "Pragma": "no-cache",
        "Connection": "keep-alive",
        "Keep-Alive": f"timeout={idle_seconds}, max={max_requests}",
    }


class MultipartStreamResponse(Response):
    """
    Long-lived multipart/x-mixed-replace response.

    The session slot must already be reserved with
    context.lifecycle.admit(); the response retires it when the
    session ends, whatever the reason.
    """

    def __init__(self, context: "StreamingContext", session_id: int) -> None:
        self.context = context
        self.session_id = session_id
        self.status_code = 200
        self.background = None
        self.media_type = stream_content_type(context.settings.stream.boundary)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        settings = self.context.settings
        transport = AsgiChunkTransport(
            send,
            receive,
            send_timeout=settings.stream.send_timeout_seconds,
        )
        headers = stream_headers(
            settings.keepalive.idle_seconds,
            settings.keepalive.http_max_requests,
        )
        for name, value in headers.items():
            transport.set_header(name, value)

        try:
            outcome = await transport.begin(self.media_type)
            if outcome is not WriteOutcome.OK:
                logger.warning(f"Session {self.session_id}: could not start response ({outcome.value})")
                return

            session = self.context.create_session(self.session_id, transport)
            await session.run()
        finally:
            await transport.close()
            self.context.lifecycle.retire(self.session_id)
