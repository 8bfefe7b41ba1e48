"""
Stream Module
=============

Frame distribution to HTTP viewers.

This module provides the delivery layer of coolstream:
    - Frame: immutable encoded image
    - FrameCache: single-slot, last-write-wins frame store
    - ClientConnection / ClientRegistry: open viewer sockets
    - StreamingServer: threaded multipart JPEG server

Example:
    from coolstream.stream import FrameCache, StreamingServer

    cache = FrameCache()
    server = StreamingServer(cache)
    server.start(8080)

    # Producer thread
    cache.publish(jpeg_bytes)
"""

from coolstream.stream.frame import Frame
from coolstream.stream.cache import FrameCache
from coolstream.stream.registry import ClientConnection, ClientRegistry
from coolstream.stream.server import (
    BindError,
    ClientIOError,
    ListenerFatalError,
    StreamingServer,
    StreamServerMetrics,
)


__all__ = [
    "Frame",
    "FrameCache",
    "ClientConnection",
    "ClientRegistry",
    "StreamingServer",
    "StreamServerMetrics",
    "BindError",
    "ClientIOError",
    "ListenerFatalError",
]
