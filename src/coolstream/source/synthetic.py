"""
Synthetic Frame Source
======================

Deterministic test pattern producer.

Generates a colour gradient with a moving bar and a text label, encoded
as JPEG. Needs no hardware, so it is the default backend and the one
the tests run against.

The pattern varies with the device preference so a device switch is
visible to viewers:
    - back:  blue-to-red gradient
    - front: green-to-red gradient
"""

import logging
from typing import Optional

import cv2
import numpy as np

from coolstream.models.status import DevicePreference
from coolstream.source.base import PublishFn, ThreadedFrameSource, encode_jpeg


logger = logging.getLogger(__name__)


class SyntheticFrameSource(ThreadedFrameSource):
    """
    Test pattern generator.

    Attributes:
        width: Frame width in pixels
        height: Frame height in pixels
        jpeg_quality: JPEG quality 1-100
        bar_width: Width of the moving bar in pixels
    """

    def __init__(
        self,
        publish: PublishFn,
        width: int = 640,
        height: int = 480,
        jpeg_quality: int = 60,
        fps: float = 15.0,
        bar_width: int = 16,
    ) -> None:
        super().__init__(publish, fps=fps, name="synthetic-source")
        self.width = width
        self.height = height
        self.jpeg_quality = jpeg_quality
        self.bar_width = bar_width

        self._background: Optional[np.ndarray] = None
        self._label: str = ""
        self._tick: int = 0

    def _open(self, device: DevicePreference) -> None:
        gradient = np.linspace(0, 255, self.width, dtype=np.uint8)
        background = np.zeros((self.height, self.width, 3), dtype=np.uint8)

        channel = 1 if device == DevicePreference.FRONT else 0
        background[:, :, channel] = gradient[::-1]
        background[:, :, 2] = gradient

        self._background = background
        self._label = device.value
        self._tick = 0

    def _capture(self) -> Optional[bytes]:
        if self._background is None:
            return None

        image = self._background.copy()
        x = (self._tick * 8) % self.width
        image[:, x:x + self.bar_width] = 255

        cv2.putText(
            image,
            f"{self._label} #{self._tick}",
            (16, 40),
            cv2.FONT_HERSHEY_SIMPLEX,
            1.0,
            (255, 255, 255),
            2,
        )
        self._tick += 1

        return encode_jpeg(image, self.jpeg_quality)

    def _close(self) -> None:
        self._background = None
