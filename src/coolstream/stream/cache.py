"""
Frame Cache
===========

Single-slot, last-write-wins store between the frame source and the
streaming clients.

This module provides the FrameCache class. The producer publishes from
its own thread; any number of streaming workers read from theirs.

Design Rules:
    - Holds at most one Frame; a publish replaces it unconditionally
    - No queueing, no backpressure: slow readers simply skip frames
    - Readers never take the publish lock; they see either the previous
      or the new Frame object, never a partially built one
    - Cleared whenever the producer stops so a new session never serves
      the previous session's last frame
"""

import logging
import threading
import time
from typing import Optional, Union

from coolstream.stream.frame import Frame


logger = logging.getLogger(__name__)


class FrameCache:
    """
    Atomic holder for the most recent frame.

    Publishing builds a complete immutable Frame first and only then swaps
    the single reference, so `read()` is a plain attribute load.

    Example:
        cache = FrameCache()

        # Producer thread
        cache.publish(jpeg_bytes)

        # Streaming worker
        frame = cache.read()
        if frame is not None:
            send(frame.data)
    """

    def __init__(self) -> None:
        self._frame: Optional[Frame] = None
        self._lock = threading.Lock()
        self._sequence: int = 0
        self._published: int = 0
        self._cleared: int = 0

    @property
    def has_frame(self) -> bool:
        """Whether a frame is currently available."""
        return self._frame is not None

    def publish(self, data: Union[bytes, bytearray, memoryview]) -> Frame:
        """
        Replace the stored frame.

        Mutable buffers are copied so the cache never aliases memory the
        producer might reuse for its next capture.

        Args:
            data: Encoded image payload

        Returns:
            The Frame now held by the cache
        """
        payload = data if isinstance(data, bytes) else bytes(data)
        with self._lock:
            self._sequence += 1
            self._published += 1
            frame = Frame(
                data=payload,
                sequence=self._sequence,
                timestamp=time.time(),
            )
            self._frame = frame
        return frame

    def read(self) -> Optional[Frame]:
        """
        Get the newest frame without blocking.

        Returns:
            The most recently published Frame, or None if nothing has
            been published since creation or the last clear().
        """
        return self._frame

    def clear(self) -> None:
        """Drop the stored frame."""
        with self._lock:
            had_frame = self._frame is not None
            self._frame = None
            self._cleared += 1
        if had_frame:
            logger.debug("Frame cache cleared")

    def metrics(self) -> dict:
        """
        Get cache metrics for observability.

        Returns:
            Dict with has_frame, sequence, published, cleared
        """
        return {
            "has_frame": self.has_frame,
            "sequence": self._sequence,
            "published": self._published,
            "cleared": self._cleared,
        }
