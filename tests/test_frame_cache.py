"""
Frame Cache Tests
=================

Single-slot, last-write-wins semantics of FrameCache.
"""

import dataclasses
import threading

import pytest

from coolstream.stream import Frame, FrameCache


class TestFrameCache:
    """Publish / read / clear behaviour."""

    def test_empty_cache_reads_none(self, frame_cache):
        assert frame_cache.read() is None
        assert frame_cache.has_frame is False

    def test_latest_publish_wins(self, frame_cache):
        frame_cache.publish(b"first")
        frame_cache.publish(b"second")

        frame = frame_cache.read()
        assert frame.data == b"second"
        assert frame.sequence == 2

    def test_read_does_not_consume(self, frame_cache, sample_jpeg):
        frame_cache.publish(sample_jpeg)

        assert frame_cache.read() is frame_cache.read()

    def test_publish_copies_mutable_buffers(self, frame_cache):
        buffer = bytearray(b"\xff\xd8abc")
        frame_cache.publish(buffer)
        buffer[2:] = b"xyz"

        assert frame_cache.read().data == b"\xff\xd8abc"
        assert isinstance(frame_cache.read().data, bytes)

    def test_clear_drops_frame(self, frame_cache, sample_jpeg):
        frame_cache.publish(sample_jpeg)
        frame_cache.clear()

        assert frame_cache.read() is None
        metrics = frame_cache.metrics()
        assert metrics["has_frame"] is False
        assert metrics["published"] == 1
        assert metrics["cleared"] == 1

    def test_publish_after_clear(self, frame_cache):
        frame_cache.publish(b"old")
        frame_cache.clear()
        frame_cache.publish(b"new")

        assert frame_cache.read().data == b"new"


class TestFrame:
    """Frame value object."""

    def test_frame_is_immutable(self):
        frame = Frame(data=b"abc", sequence=1, timestamp=0.0)
        with pytest.raises(dataclasses.FrozenInstanceError):
            frame.data = b"xyz"

    def test_size_and_len(self):
        frame = Frame(data=b"abcd", sequence=1, timestamp=0.0)
        assert frame.size == 4
        assert len(frame) == 4

    def test_repr_omits_payload(self):
        frame = Frame(data=b"x" * 10_000, sequence=7, timestamp=1.5)
        assert "xxxx" not in repr(frame)
        assert "size=10000" in repr(frame)


class TestConcurrentAccess:
    """Readers racing a publisher never observe a torn frame."""

    def test_no_torn_reads(self):
        cache = FrameCache()
        stop = threading.Event()
        torn = []

        def publisher():
            value = 0
            while not stop.is_set():
                value = (value + 1) % 256
                cache.publish(bytes([value]) * 4096)

        def reader():
            for _ in range(5000):
                frame = cache.read()
                if frame is None:
                    continue
                if len(frame.data) != 4096 or len(set(frame.data)) != 1:
                    torn.append(frame)

        writer = threading.Thread(target=publisher)
        readers = [threading.Thread(target=reader) for _ in range(4)]
        writer.start()
        for r in readers:
            r.start()
        for r in readers:
            r.join()
        stop.set()
        writer.join()

        assert torn == []

    def test_sequence_strictly_increases(self):
        cache = FrameCache()
        threads = [
            threading.Thread(target=lambda: [cache.publish(b"x") for _ in range(100)])
            for _ in range(5)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert cache.read().sequence == 500
        assert cache.metrics()["published"] == 500
