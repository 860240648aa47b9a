"""
framecast Main Application
==========================

FastAPI entry point for the streaming service.

Endpoints:
    GET  /         - Viewer page (embeds /stream)
    GET  /stream   - multipart/x-mixed-replace JPEG stream
    GET  /health   - Liveness check
    GET  /metrics  - Capture, queue, session and beacon counters
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, Response

from framecast.capture import FrameSource
from framecast.config import Settings, load_config, setup_logging
from framecast.context import StreamingContext
from framecast.errors import SessionLimitError
from framecast.stream import MultipartStreamResponse


logger = logging.getLogger(__name__)


INDEX_HTML = (
    "<!DOCTYPE html>"
    "<html>"
    "<head>"
    "<title>{title}</title>"
    "<meta name='viewport' content='width=device-width, initial-scale=1'>"
    "<style>"
    "body{{font-family:Arial;text-align:center;background:#222;color:white;margin:0;padding:10px;}}"
    ".container{{max-width:600px;margin:0 auto;}}"
    ".video-container{{margin:10px 0;border:1px solid #444;border-radius:5px;overflow:hidden;}}"
    "img{{width:100%;height:auto;display:block;}}"
    "</style>"
    "</head>"
    "<body>"
    "<div class='container'>"
    "<h1>{title}</h1>"
    "<div class='video-container'>"
    "<img src='/stream' alt='Stream'>"
    "</div>"
    "</div>"
    "</body>"
    "</html>"
)


def get_context(request: Request) -> StreamingContext:
    return request.app.state.context


# =============================================================================
# Application Factory
# =============================================================================

def create_app(
    settings: Optional[Settings] = None,
    source: Optional[FrameSource] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        settings: Configuration; loaded from file/env if None
        source: Frame source override; built from settings if None

    Returns:
        FastAPI app whose lifespan owns a StreamingContext
    """
    settings = settings or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Application lifespan manager with graceful shutdown."""
        logger.info(f"Starting {settings.service.name} {settings.service.version}")

        context = StreamingContext(settings, source=source)
        app.state.context = context
        await context.start()

        yield

        logger.info("Shutting down gracefully...")
        await context.stop()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="framecast",
        description="Adaptive live-frame streaming service",
        version=settings.service.version,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # =========================================================================
    # HTTP Endpoints
    # =========================================================================

    @app.get("/", response_class=HTMLResponse)
    async def index() -> HTMLResponse:
        """Viewer page."""
        return HTMLResponse(
            INDEX_HTML.format(title=settings.service.title),
            headers={"Cache-Control": "max-age=300"},
        )

    @app.get("/stream")
    async def stream(request: Request) -> Response:
        """
        Live JPEG stream.

        Returns 503 when every session slot is taken.
        """
        context = get_context(request)
        try:
            session_id = context.lifecycle.admit()
        except SessionLimitError as e:
            logger.warning(str(e))
            return JSONResponse({"error": str(e)}, status_code=503)

        return MultipartStreamResponse(context, session_id)

    @app.get("/health")
    async def health(request: Request) -> JSONResponse:
        """
        Liveness check - is the process alive?

        Always returns 200 if the service is running.
        """
        context = get_context(request)
        return JSONResponse({
            "status": "healthy",
            "uptime_seconds": round(time.time() - context.started_at, 1),
            "streaming": context.streaming_enabled,
        })

    @app.get("/metrics")
    async def metrics(request: Request) -> JSONResponse:
        """Detailed metrics for observability."""
        return JSONResponse(get_context(request).metrics())

    return app


# =============================================================================
# Module-level Application
# =============================================================================

settings = load_config()
setup_logging(settings)
app = create_app(settings)


if __name__ == "__main__":
    from framecast.server import main

    main()
