"""
coolstream
==========

Live MJPEG camera relay with client-driven power management.

A single camera (or any other frame source) is shared by any number of
HTTP viewers. The source is switched on when the first viewer connects
and switched off again once the last viewer has been gone for the idle
timeout.

Components:
    - stream: frame cache, client registry and the multipart HTTP server
    - lifecycle: client-count driven producer start/stop with idle timer
    - source: frame producers (OpenCV camera, synthetic test pattern)
    - models: status enums and payloads
    - main: FastAPI control surface

Example:
    from coolstream.stream import FrameCache
    from coolstream.source import SyntheticFrameSource
    from coolstream.lifecycle import LifecycleController

    cache = FrameCache()
    source = SyntheticFrameSource(publish=cache.publish)
    controller = LifecycleController(cache=cache, source=source)
    controller.start_server(8080)
"""

__version__ = "0.1.0"
__author__ = "coolstream contributors"

__all__ = [
    "__version__",
]
