"""
Frame Data Model
================

Immutable encoded frame handed from the producer to streaming clients.

Design Rules:
    - Payload is always a `bytes` object (never a producer buffer alias)
    - Frames are never mutated; a new Frame replaces the previous one
    - Does NOT decode or inspect image data
"""

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Frame:
    """
    One compressed image as published by a frame source.

    Attributes:
        data: Encoded image bytes (JPEG)
        sequence: Publish counter assigned by the FrameCache
        timestamp: UNIX timestamp of the publish
    """

    data: bytes
    sequence: int
    timestamp: float

    @property
    def size(self) -> int:
        """Payload length in bytes."""
        return len(self.data)

    def __len__(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        """Compact repr that doesn't dump the payload."""
        return (
            f"Frame(sequence={self.sequence}, "
            f"size={len(self.data)}, "
            f"timestamp={self.timestamp:.3f})"
        )
