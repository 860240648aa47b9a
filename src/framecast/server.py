"""
Server Runner
=============

Command-line entry point that serves the app with uvicorn.

The listening socket is created here rather than by uvicorn so TCP
keep-alive can be enabled on it; accepted connections inherit the
options, and dead peers on a flaky link are detected after
idle + interval * count seconds.

Usage:
    framecast [--config PATH] [--host HOST] [--port PORT]
              [--mode direct|queued] [--backend mock|opencv]
              [--device DEVICE] [--beacon]
"""

import argparse
import asyncio
import logging
import socket
from types import FrameType
from typing import Optional

import uvicorn
from fastapi import FastAPI

from framecast.config import KeepAliveConfig, Settings, load_config, setup_logging
from framecast.main import create_app


logger = logging.getLogger(__name__)


def build_listen_socket(host: str, port: int, keepalive: KeepAliveConfig) -> socket.socket:
    """
    Bind a TCP listening socket with keep-alive options applied.

    Options not supported by the platform are skipped.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)

    if keepalive.enabled:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        for option, value in (
            ("TCP_KEEPIDLE", keepalive.idle_seconds),
            ("TCP_KEEPINTVL", keepalive.interval_seconds),
            ("TCP_KEEPCNT", keepalive.count),
        ):
            if hasattr(socket, option):
                sock.setsockopt(socket.IPPROTO_TCP, getattr(socket, option), value)
            else:
                logger.debug(f"{option} not supported on this platform")

    sock.bind((host, port))
    sock.listen(16)
    sock.setblocking(False)
    return sock


class StreamingServer(uvicorn.Server):
    """
    uvicorn server that ends open streams when asked to exit.

    uvicorn waits for open connections before running lifespan
    shutdown, and a /stream response only ends when the client leaves
    or the streaming stop event is set. The exit handler sets it.
    """

    def __init__(self, config: uvicorn.Config, app: FastAPI) -> None:
        super().__init__(config)
        self._app = app

    def handle_exit(self, sig: int, frame: Optional[FrameType]) -> None:
        context = getattr(self._app.state, "context", None)
        if context is not None:
            logger.info(f"Received signal {sig}, stopping streams")
            context.request_stop()
        super().handle_exit(sig, frame)


def run(settings: Settings) -> None:
    """Serve the application until interrupted."""
    app = create_app(settings)
    sock = build_listen_socket(settings.server.host, settings.server.port, settings.keepalive)

    config = uvicorn.Config(
        app,
        log_level=settings.logging.level.lower(),
        timeout_keep_alive=settings.keepalive.idle_seconds,
        timeout_graceful_shutdown=settings.server.graceful_shutdown_seconds,
    )
    server = StreamingServer(config, app)

    logger.info(
        f"Serving on http://{settings.server.host}:{settings.server.port} "
        f"(stream: /stream, mode: {settings.stream.mode})"
    )
    try:
        asyncio.run(server.serve(sockets=[sock]))
    finally:
        sock.close()


# =============================================================================
# CLI Entry Point
# =============================================================================

def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="framecast - adaptive live JPEG streaming",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  framecast
  framecast --port 8080 --mode queued
  framecast --backend opencv --device 0
  framecast --config my_config.yaml --beacon
        """,
    )

    parser.add_argument("--config", "-c", type=str, default=None, help="Path to YAML config file")
    parser.add_argument("--host", "-H", type=str, default=None, help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", "-p", type=int, default=None, help="Bind port (default: 80)")
    parser.add_argument(
        "--mode",
        choices=["direct", "queued"],
        default=None,
        help="Direct hand-off or decoupled queue (default: direct)",
    )
    parser.add_argument(
        "--backend",
        choices=["mock", "opencv"],
        default=None,
        help="Frame source backend (default: mock)",
    )
    parser.add_argument("--device", type=str, default=None, help="OpenCV device index or URL")
    parser.add_argument("--beacon", action="store_true", help="Broadcast presence over UDP")

    return parser.parse_args(argv)


def apply_args(settings: Settings, args: argparse.Namespace) -> Settings:
    """Apply CLI overrides on top of file and environment configuration."""
    if args.host is not None:
        settings.server.host = args.host
    if args.port is not None:
        settings.server.port = args.port
    if args.mode is not None:
        settings.stream.mode = args.mode
    if args.backend is not None:
        settings.capture.backend = args.backend
    if args.device is not None:
        settings.capture.device = args.device
    if args.beacon:
        settings.beacon.enabled = True
    return settings


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point."""
    args = parse_args(argv)
    settings = apply_args(load_config(args.config), args)
    setup_logging(settings)
    run(settings)


if __name__ == "__main__":
    main()
