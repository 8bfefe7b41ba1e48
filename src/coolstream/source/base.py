"""
Frame Source Interface
======================

Contract between the lifecycle controller and whatever produces frames.

The controller only ever calls start(device) and stop(); frames flow the
other way through a single-argument publish callable (normally
FrameCache.publish).

Design Rules:
    - start() raises ProducerStartError when the device is unavailable
    - stop() is idempotent and safe on a partially started source
    - No frame is published after stop() returns
"""

import logging
import threading
import time
from typing import Callable, Optional, Protocol

import cv2
import numpy as np

from coolstream.models.status import DevicePreference


logger = logging.getLogger(__name__)


PublishFn = Callable[[bytes], object]


class ProducerStartError(Exception):
    """Raised when a frame source cannot be started."""


class FrameSource(Protocol):
    """
    Protocol for frame producers.

    Implemented by:
        - SyntheticFrameSource (test pattern, default)
        - CameraFrameSource (OpenCV capture device)
    """

    @property
    def is_running(self) -> bool:
        """Whether frames are currently being produced."""
        ...

    def start(self, device: DevicePreference) -> None:
        """
        Begin producing frames from the given device.

        Raises:
            ProducerStartError: If the device cannot be opened
        """
        ...

    def stop(self) -> None:
        """Stop producing frames and release the device."""
        ...


def encode_jpeg(image: np.ndarray, quality: int) -> Optional[bytes]:
    """
    Encode a BGR image as JPEG.

    Args:
        image: BGR image (H, W, 3), dtype=uint8
        quality: JPEG quality 1-100

    Returns:
        JPEG bytes, or None if OpenCV refused the image
    """
    ok, buffer = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, int(quality)])
    if not ok:
        return None
    return buffer.tobytes()


class ThreadedFrameSource:
    """
    Base for sources that produce frames on their own capture thread.

    Subclasses implement _open(device), _capture() and _close(). The base
    class owns the thread, the rate limit and the stop handshake.

    Publishing and the stop signal share a lock, so once stop() returns no
    further frame reaches the publish callable. A capture thread that
    outlives stop_timeout releases the device itself when it exits; until
    then start() refuses to reopen it.

    Attributes:
        fps: Upper bound on produced frames per second
        stop_timeout: Seconds stop() waits for the capture thread
    """

    stop_timeout: float = 5.0

    def __init__(self, publish: PublishFn, fps: float = 15.0, name: str = "frame-source") -> None:
        if fps <= 0:
            raise ValueError("fps must be > 0")

        self.fps = fps
        self._publish = publish
        self._name = name
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._publish_lock = threading.Lock()
        self._device: Optional[DevicePreference] = None
        self._frames_produced: int = 0

        # Hand-off of the device release to a capture thread stop() gave up on
        self._exit_lock = threading.Lock()
        self._run_finished: bool = True
        self._close_deferred: bool = False

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def device(self) -> Optional[DevicePreference]:
        """Device the source was last started with."""
        return self._device

    @property
    def frames_produced(self) -> int:
        return self._frames_produced

    def start(self, device: DevicePreference) -> None:
        if self._thread is not None:
            logger.debug(f"{self._name} already running on {self._device}")
            return

        with self._exit_lock:
            if self._close_deferred:
                raise ProducerStartError(
                    f"{self._name} previous capture thread has not released the device yet"
                )
            self._run_finished = False

        self._stop_event.clear()
        try:
            self._open(device)
        except Exception:
            with self._exit_lock:
                self._run_finished = True
            raise
        self._device = device

        self._thread = threading.Thread(
            target=self._run,
            name=self._name,
            daemon=True,
        )
        self._thread.start()
        logger.info(f"{self._name} started ({device.value}, {self.fps:g} fps)")

    def stop(self) -> None:
        with self._publish_lock:
            self._stop_event.set()

        thread = self._thread
        self._thread = None
        abandoned = False
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.stop_timeout)
            with self._exit_lock:
                if not self._run_finished:
                    self._close_deferred = True
                    abandoned = True
            if abandoned:
                logger.error(
                    f"{self._name} capture thread did not exit within "
                    f"{self.stop_timeout:g}s, device released when it does"
                )

        with self._exit_lock:
            if self._close_deferred:
                return

        self._close()
        if thread is not None:
            logger.info(f"{self._name} stopped after {self._frames_produced} frames")

    def _run(self) -> None:
        """Capture loop: produce, publish, sleep off the rest of the frame slot."""
        interval = 1.0 / self.fps

        try:
            while not self._stop_event.is_set():
                started = time.monotonic()

                data = self._capture()
                if data is not None:
                    with self._publish_lock:
                        if self._stop_event.is_set():
                            break
                        self._publish(data)
                    self._frames_produced += 1

                elapsed = time.monotonic() - started
                self._stop_event.wait(max(0.0, interval - elapsed))
        finally:
            with self._exit_lock:
                self._run_finished = True
                if self._close_deferred:
                    self._close()
                    self._close_deferred = False
                    logger.info(f"{self._name} late capture thread exited, device released")

    def _open(self, device: DevicePreference) -> None:
        raise NotImplementedError

    def _capture(self) -> Optional[bytes]:
        raise NotImplementedError

    def _close(self) -> None:
        raise NotImplementedError
