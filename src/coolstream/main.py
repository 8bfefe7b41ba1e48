"""
coolstream Main Application
===========================

FastAPI control surface for the stream relay.

The MJPEG stream itself is served by the StreamingServer on its own port
(default 8080); this app only starts/stops it, switches cameras and
reports status.

Endpoints:
    GET  /              - Service information
    GET  /health        - Liveness probe
    GET  /status        - Server, producer and client state
    GET  /metrics       - Cache, server and lifecycle counters
    POST /server/start  - Start listening for viewers (409 if the port is taken)
    POST /server/stop   - Stop listening, drop viewers, stop the producer now
    PUT  /device        - Select the front or back camera
"""

import functools
import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from fastapi import FastAPI
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from coolstream.config import Settings, settings
from coolstream.lifecycle import LifecycleController
from coolstream.models import DeviceRequest
from coolstream.source import CameraFrameSource, FrameSource, SyntheticFrameSource
from coolstream.stream import BindError, FrameCache, StreamingServer


logger = logging.getLogger(__name__)


# =============================================================================
# Global State
# =============================================================================

_frame_cache: Optional[FrameCache] = None
_frame_source: Optional[FrameSource] = None
_controller: Optional[LifecycleController] = None
_startup_time: float = 0.0


# =============================================================================
# Getters
# =============================================================================

def get_frame_cache() -> Optional[FrameCache]:
    return _frame_cache

def get_controller() -> Optional[LifecycleController]:
    return _controller


# =============================================================================
# Component Factories
# =============================================================================

def create_frame_source(config: Settings, cache: FrameCache) -> FrameSource:
    """
    Create the frame source selected in config.

    Args:
        config: Loaded settings
        cache: FrameCache the source publishes into
    """
    source_config = config.source

    if source_config.backend == "synthetic":
        logger.info("Using SyntheticFrameSource")
        return SyntheticFrameSource(
            publish=cache.publish,
            width=source_config.width,
            height=source_config.height,
            jpeg_quality=source_config.jpeg_quality,
            fps=source_config.fps,
        )

    elif source_config.backend == "camera":
        logger.info(
            f"Using CameraFrameSource: back={source_config.back_index}, "
            f"front={source_config.front_index}"
        )
        return CameraFrameSource(
            publish=cache.publish,
            back_index=source_config.back_index,
            front_index=source_config.front_index,
            width=source_config.width,
            height=source_config.height,
            jpeg_quality=source_config.jpeg_quality,
            fps=source_config.fps,
        )

    else:
        raise ValueError(f"Unknown frame source backend: {source_config.backend}")


def create_controller(
    config: Settings,
    cache: FrameCache,
    source: FrameSource,
) -> LifecycleController:
    """Wire a LifecycleController whose servers use the configured stream timings."""
    stream_config = config.stream
    server_factory = functools.partial(
        StreamingServer,
        cache,
        host=stream_config.host,
        frame_interval=stream_config.frame_interval_ms / 1000.0,
        retry_interval=stream_config.retry_interval_ms / 1000.0,
        send_timeout=stream_config.send_timeout_seconds,
        accept_poll_interval=stream_config.accept_poll_seconds,
        shutdown_join_timeout=stream_config.shutdown_join_seconds,
    )

    return LifecycleController(
        cache=cache,
        source=source,
        idle_timeout=config.lifecycle.idle_timeout_seconds,
        restart_pause=config.lifecycle.restart_pause_ms / 1000.0,
        stop_wait=config.lifecycle.stop_wait_seconds,
        device=config.source.device,
        server_factory=server_factory,
    )


# =============================================================================
# Lifespan Management
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the relay on startup, tear it down on shutdown."""
    global _frame_cache, _frame_source, _controller, _startup_time

    _startup_time = time.time()
    logger.info(f"Starting {settings.service.name} {settings.service.version}")

    _frame_cache = FrameCache()
    _frame_source = create_frame_source(settings, _frame_cache)
    _controller = create_controller(settings, _frame_cache, _frame_source)

    if settings.control.autostart_server:
        try:
            await run_in_threadpool(_controller.start_server, settings.stream.port)
        except BindError as e:
            # Keep the control API up so the operator can retry
            logger.error(f"Autostart failed: {e}")

    yield

    logger.info("Shutting down gracefully...")
    await run_in_threadpool(_controller.close)
    logger.info("Shutdown complete")


# =============================================================================
# FastAPI Application
# =============================================================================

app = FastAPI(
    title="coolstream",
    description="Live MJPEG relay with client-driven camera power management",
    version=settings.service.version,
    lifespan=lifespan,
)


def _not_ready() -> JSONResponse:
    return JSONResponse({"error": "Service not initialized"}, status_code=503)


# =============================================================================
# HTTP Endpoints
# =============================================================================

@app.get("/")
async def root() -> JSONResponse:
    """Service information endpoint."""
    return JSONResponse({
        "service": settings.service.name,
        "version": settings.service.version,
        "stream_port": settings.stream.port,
        "source_backend": settings.source.backend,
    })


@app.get("/health")
async def health() -> JSONResponse:
    """Liveness probe - always 200 while the process is up."""
    return JSONResponse({
        "status": "healthy",
        "uptime_seconds": round(time.time() - _startup_time, 1),
    })


@app.get("/status")
async def status() -> JSONResponse:
    """Server, producer and client state."""
    controller = get_controller()
    if controller is None:
        return _not_ready()
    return JSONResponse(controller.status().model_dump(mode="json"))


@app.get("/metrics")
async def metrics() -> JSONResponse:
    """Counters for observability."""
    controller = get_controller()
    if controller is None:
        return _not_ready()
    return JSONResponse({
        "uptime_seconds": round(time.time() - _startup_time, 1),
        **controller.metrics_snapshot(),
    })


@app.post("/server/start")
async def start_server(port: Optional[int] = None) -> JSONResponse:
    """
    Start the stream server.

    Uses the configured port unless `port` is given. Returns 409 if the
    port cannot be bound; the server stays stopped.
    """
    controller = get_controller()
    if controller is None:
        return _not_ready()

    target_port = settings.stream.port if port is None else port
    try:
        await run_in_threadpool(controller.start_server, target_port)
    except BindError as e:
        return JSONResponse(
            {"error": str(e), "port": target_port},
            status_code=409,
        )

    return JSONResponse(controller.status().model_dump(mode="json"))


@app.post("/server/stop")
async def stop_server() -> JSONResponse:
    """Stop the stream server and the producer."""
    controller = get_controller()
    if controller is None:
        return _not_ready()

    await run_in_threadpool(controller.stop_server)
    return JSONResponse(controller.status().model_dump(mode="json"))


@app.put("/device")
async def set_device(request: DeviceRequest) -> JSONResponse:
    """Select the camera. Restarts the producer if it is running."""
    controller = get_controller()
    if controller is None:
        return _not_ready()

    changed = controller.set_device(request.device)
    return JSONResponse({
        "changed": changed,
        **controller.status().model_dump(mode="json"),
    })


# =============================================================================
# Main Entry Point
# =============================================================================

def run() -> None:
    """Console entry point."""
    import uvicorn

    uvicorn.run(
        "coolstream.main:app",
        host=settings.control.host,
        port=settings.control.port,
        reload=False,
    )


if __name__ == "__main__":
    run()
