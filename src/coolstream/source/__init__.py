"""
Source Module
=============

Frame producers.

The lifecycle controller treats every producer as a black box with
start(device) and stop(); frames are pushed into the FrameCache through
the publish callable the source was built with.

Components:
    - FrameSource: Protocol for producers
    - ProducerStartError: Device could not be started
    - SyntheticFrameSource: Test pattern generator (no hardware)
    - CameraFrameSource: OpenCV capture device
"""

from coolstream.source.base import (
    FrameSource,
    ProducerStartError,
    PublishFn,
    ThreadedFrameSource,
    encode_jpeg,
)
from coolstream.source.camera import CameraFrameSource
from coolstream.source.synthetic import SyntheticFrameSource

__all__ = [
    "FrameSource",
    "ProducerStartError",
    "PublishFn",
    "ThreadedFrameSource",
    "encode_jpeg",
    "CameraFrameSource",
    "SyntheticFrameSource",
]
