"""
framecast
=========

Adaptive live-frame streaming for cameras on lossy wireless links.

This package captures JPEG frames from a camera, filters them by skip ratio
and size, and serves them to HTTP clients as a multipart/x-mixed-replace
stream. Transport errors drive an adaptive controller that shrinks frames,
paces writes and, after repeated failures, takes a cooldown pause instead of
dropping the connection.

Components:
    - capture: Frame model, frame sources, bounded queue, capture loop
    - stream: Encoder, transport adapter, adaptive controller, sessions
    - context: StreamingContext shared by capture and connection tasks
    - beacon: UDP presence broadcast
    - main: FastAPI application

Example:
    from framecast.config import load_config
    from framecast.main import create_app

    app = create_app(load_config())
"""

__version__ = "0.1.0"
__author__ = "framecast developers"

__all__ = [
    "__version__",
]
