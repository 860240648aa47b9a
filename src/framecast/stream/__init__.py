"""
Stream Module
=============

Consumer side of the pipeline: from a captured frame to bytes on the wire.

This module provides:
    - StreamEncoder: multipart/x-mixed-replace framing with paced sub-chunks
    - AsgiChunkTransport: ASGI writer that classifies write errors
    - AdaptiveController: error-driven skip, size and pacing policy
    - DirectFeed / QueuedFeed: where a session gets frames
    - StreamSession: per-connection streaming loop
    - ConnectionLifecycle: session admission and teardown
    - MultipartStreamResponse: the /stream ASGI response

Example:
    session_id = context.lifecycle.admit()
    return MultipartStreamResponse(context, session_id)
"""

from framecast.stream.adaptive import AdaptiveController
from framecast.stream.encoder import (
    DEFAULT_BOUNDARY,
    KEEPALIVE_TOKEN,
    FrameWrite,
    StreamEncoder,
    boundary_marker,
    part_header,
    stream_content_type,
)
from framecast.stream.transport import AsgiChunkTransport, ChunkTransport
from framecast.stream.feed import DirectFeed, FrameFeed, QueuedFeed
from framecast.stream.session import SessionMetrics, StreamSession
from framecast.stream.lifecycle import ConnectionLifecycle
from framecast.stream.response import MultipartStreamResponse, stream_headers


__all__ = [
    "AdaptiveController",
    "DEFAULT_BOUNDARY",
    "KEEPALIVE_TOKEN",
    "FrameWrite",
    "StreamEncoder",
    "boundary_marker",
    "part_header",
    "stream_content_type",
    "AsgiChunkTransport",
    "ChunkTransport",
    "DirectFeed",
    "FrameFeed",
    "QueuedFeed",
    "SessionMetrics",
    "StreamSession",
    "ConnectionLifecycle",
    "MultipartStreamResponse",
    "stream_headers",
]
