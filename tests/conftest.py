"""
Test Configuration
==================

Pytest fixtures and helpers for coolstream.

    - FakeFrameSource: records start/stop calls, can be told to fail
    - ManualScheduler: idle timer backend driven by advance(seconds)
    - Socket helpers for talking to a StreamingServer over loopback
"""

import socket
import threading
import time
from typing import Callable, List, Optional

import pytest

from coolstream.lifecycle import LifecycleController
from coolstream.models import DevicePreference
from coolstream.source import ProducerStartError
from coolstream.stream import FrameCache, StreamingServer


SAMPLE_JPEG = b"\xff\xd8\xff\xe0" + bytes(range(256)) * 4 + b"\xff\xd9"


# =============================================================================
# Helpers
# =============================================================================

def wait_until(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll until predicate() is true or the timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def open_viewer(port: int, send_request: bool = True) -> socket.socket:
    """Connect to a stream on loopback like a browser would."""
    sock = socket.create_connection(("127.0.0.1", port), timeout=5.0)
    if send_request:
        sock.sendall(b"GET / HTTP/1.1\r\nHost: localhost\r\n\r\n")
    return sock


def recv_exact(sock: socket.socket, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining:
        chunk = sock.recv(remaining)
        if not chunk:
            raise ConnectionError(f"closed with {remaining} bytes outstanding")
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def recv_until(sock: socket.socket, marker: bytes) -> bytes:
    data = b""
    while not data.endswith(marker):
        chunk = sock.recv(1)
        if not chunk:
            raise ConnectionError(f"closed before {marker!r}")
        data += chunk
    return data


def read_chunk(sock: socket.socket) -> tuple:
    """
    Read one multipart chunk.

    Returns:
        (headers dict, payload bytes)
    """
    head = recv_until(sock, b"\r\n\r\n")
    lines = head.decode("ascii").split("\r\n")
    assert lines[0] == ""
    assert lines[1] == "--ipcam"
    headers = {}
    for line in lines[2:]:
        if line:
            name, _, value = line.partition(":")
            headers[name.strip()] = value.strip()
    payload = recv_exact(sock, int(headers["Content-Length"]))
    return headers, payload


def is_closed_by_peer(sock: socket.socket, timeout: float = 5.0) -> bool:
    """Drain the socket until EOF/reset; True if the server closed it."""
    sock.settimeout(timeout)
    try:
        while True:
            if not sock.recv(65536):
                return True
    except (ConnectionResetError, BrokenPipeError):
        return True
    except socket.timeout:
        return False


# =============================================================================
# Fakes
# =============================================================================

class FakeFrameSource:
    """Frame source that records every call instead of touching hardware."""

    def __init__(self, publish: Optional[Callable[[bytes], object]] = None) -> None:
        self.calls: List[tuple] = []
        self.fail_start: bool = False
        self._publish = publish
        self._running = False
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def starts(self) -> List[DevicePreference]:
        with self._lock:
            return [call[1] for call in self.calls if call[0] == "start"]

    @property
    def stops(self) -> int:
        with self._lock:
            return sum(1 for call in self.calls if call[0] == "stop")

    def start(self, device: DevicePreference) -> None:
        with self._lock:
            self.calls.append(("start", device))
        if self.fail_start:
            raise ProducerStartError("no camera")
        self._running = True
        if self._publish is not None:
            self._publish(SAMPLE_JPEG)

    def stop(self) -> None:
        with self._lock:
            self.calls.append(("stop",))
        self._running = False


class ManualHandle:
    def __init__(self, due: float, callback: Callable[[], None]) -> None:
        self.due = due
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Scheduler whose clock only moves when a test calls advance()."""

    def __init__(self) -> None:
        self.now = 0.0
        self.handles: List[ManualHandle] = []

    def call_later(self, delay: float, callback: Callable[[], None]) -> ManualHandle:
        handle = ManualHandle(self.now + delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def pending(self) -> List[ManualHandle]:
        return [h for h in self.handles if not h.cancelled and not h.fired]

    def advance(self, seconds: float) -> None:
        self.now += seconds
        for handle in list(self.handles):
            if not handle.cancelled and not handle.fired and handle.due <= self.now:
                handle.fired = True
                handle.callback()


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def sample_jpeg() -> bytes:
    return SAMPLE_JPEG


@pytest.fixture
def frame_cache() -> FrameCache:
    return FrameCache()


@pytest.fixture
def fake_source(frame_cache) -> FakeFrameSource:
    return FakeFrameSource(publish=frame_cache.publish)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def make_server(frame_cache):
    """Factory for fast-polling loopback servers; all are shut down after the test."""
    servers = []

    def factory(**kwargs) -> StreamingServer:
        options = dict(
            host="127.0.0.1",
            frame_interval=0.01,
            retry_interval=0.01,
            accept_poll_interval=0.05,
            shutdown_join_timeout=2.0,
        )
        options.update(kwargs)
        server = StreamingServer(frame_cache, **options)
        servers.append(server)
        return server

    yield factory

    for server in servers:
        server.shutdown()


@pytest.fixture
def controller(frame_cache, fake_source, scheduler, make_server):
    """Controller on a fake source, manual idle clock and loopback servers."""
    ctrl = LifecycleController(
        cache=frame_cache,
        source=fake_source,
        idle_timeout=30.0,
        restart_pause=0.0,
        stop_wait=5.0,
        scheduler=scheduler,
        server_factory=make_server,
    )
    yield ctrl
    ctrl.close()
