"""
Camera Frame Source
===================

OpenCV capture device as a frame producer.

The device preference is mapped to a capture index through configuration;
enumerating the cameras attached to the host is left to the operator.
"""

import logging
from typing import Optional

import cv2

from coolstream.models.status import DevicePreference
from coolstream.source.base import (
    ProducerStartError,
    PublishFn,
    ThreadedFrameSource,
    encode_jpeg,
)


logger = logging.getLogger(__name__)


class CameraFrameSource(ThreadedFrameSource):
    """
    Captures from cv2.VideoCapture and publishes JPEG frames.

    Attributes:
        back_index: Capture index used for DevicePreference.BACK
        front_index: Capture index used for DevicePreference.FRONT
        width: Requested capture width
        height: Requested capture height
        jpeg_quality: JPEG quality 1-100
    """

    def __init__(
        self,
        publish: PublishFn,
        back_index: int = 0,
        front_index: int = 1,
        width: int = 640,
        height: int = 480,
        jpeg_quality: int = 60,
        fps: float = 15.0,
    ) -> None:
        super().__init__(publish, fps=fps, name="camera-source")
        self.back_index = back_index
        self.front_index = front_index
        self.width = width
        self.height = height
        self.jpeg_quality = jpeg_quality

        self._capture_device: Optional[cv2.VideoCapture] = None
        self._read_failures: int = 0

    def device_index(self, device: DevicePreference) -> int:
        """Capture index for a device preference."""
        if device == DevicePreference.FRONT:
            return self.front_index
        return self.back_index

    def _open(self, device: DevicePreference) -> None:
        index = self.device_index(device)
        logger.info(f"Opening camera index={index} ({device.value})")

        capture = cv2.VideoCapture(index)
        if not capture.isOpened():
            capture.release()
            raise ProducerStartError(
                f"Camera index {index} ({device.value}) could not be opened"
            )

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self._capture_device = capture
        self._read_failures = 0

        # Driver may not honour the requested size
        actual_w = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_h = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info(f"Camera capture started: {actual_w}x{actual_h}")

    def _capture(self) -> Optional[bytes]:
        capture = self._capture_device
        if capture is None:
            return None

        ok, image = capture.read()
        if not ok or image is None:
            self._read_failures += 1
            if self._read_failures == 1 or self._read_failures % 100 == 0:
                logger.warning(f"Camera read failed ({self._read_failures} so far)")
            return None

        try:
            data = encode_jpeg(image, self.jpeg_quality)
        except cv2.error as e:
            logger.error(f"JPEG encode failed: {e}")
            return None
        if data is None:
            logger.error("JPEG encode returned no data")
        return data

    def _close(self) -> None:
        capture = self._capture_device
        self._capture_device = None
        if capture is not None:
            capture.release()
