"""
Lifecycle Controller
====================

Client-count driven power management for the frame source.

This module provides the LifecycleController class which:
    - Owns the streaming server (start/stop) and the frame source
    - Starts the source when the first viewer connects
    - Stops the source once the last viewer has been gone for the idle timeout
    - Stops the source immediately when the server is stopped
    - Restarts the source when the device preference changes while active

State transitions:

    Event                              Action                         State
    ---------------------------------  -----------------------------  ------
    connect, count 0 -> 1              cancel idle timer, start       Active
    connect, count > 1                 none                           Active
    disconnect, count -> 0             schedule idle timer            Active
    disconnect, count > 0              none                           Active
    idle timer fires, count == 0       stop                           Idle
    idle timer fires, count > 0        none (stale)                   Active
    server stop                        cancel idle timer, stop        Idle
    device change while Active         stop, pause, start             Active
    device change while Idle           record preference only         Idle

Concurrency:
    Every start/stop of the frame source runs on one single-worker
    executor, so source calls never overlap. Client count, state and the
    idle timer are guarded by one lock; executor jobs are submitted while
    holding it, which keeps a cancel-then-start pair in order.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Callable, Optional

from coolstream.lifecycle.timer import IdleTimer, Scheduler
from coolstream.models.status import (
    DevicePreference,
    LifecycleState,
    ServerLifecycle,
    ServiceStatus,
)
from coolstream.source.base import FrameSource, ProducerStartError
from coolstream.stream.cache import FrameCache
from coolstream.stream.server import ListenerFatalError, StreamingServer


logger = logging.getLogger(__name__)


class LifecycleMetrics:
    """Counters for LifecycleController observability."""

    __slots__ = (
        "producer_starts",
        "producer_stops",
        "start_failures",
        "idle_timeouts",
        "device_restarts",
    )

    def __init__(self) -> None:
        self.producer_starts: int = 0
        self.producer_stops: int = 0
        self.start_failures: int = 0
        self.idle_timeouts: int = 0
        self.device_restarts: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "producer_starts": self.producer_starts,
            "producer_stops": self.producer_stops,
            "start_failures": self.start_failures,
            "idle_timeouts": self.idle_timeouts,
            "device_restarts": self.device_restarts,
        }


class LifecycleController:
    """
    State machine mapping viewer and control events to source start/stop.

    Attributes:
        cache: FrameCache the source publishes into
        source: Frame producer
        idle_timeout: Seconds after the last disconnect before the source stops
        restart_pause: Seconds between stop and start on a device change
        stop_wait: Max seconds stop_server() waits for the source to stop
        metrics: Operational counters

    Example:
        cache = FrameCache()
        source = SyntheticFrameSource(publish=cache.publish)
        controller = LifecycleController(cache, source, idle_timeout=30.0)

        port = controller.start_server(8080)
        controller.set_device(DevicePreference.FRONT)
        print(controller.status())
        controller.stop_server()
        controller.close()
    """

    def __init__(
        self,
        cache: FrameCache,
        source: FrameSource,
        idle_timeout: float = 30.0,
        restart_pause: float = 0.2,
        stop_wait: float = 5.0,
        device: DevicePreference = DevicePreference.BACK,
        scheduler: Optional[Scheduler] = None,
        server_factory: Optional[Callable[[], StreamingServer]] = None,
    ) -> None:
        """
        Initialize lifecycle controller.

        Args:
            cache: FrameCache shared with the streaming server
            source: Frame producer to power on and off
            idle_timeout: Idle shutdown delay in seconds
            restart_pause: Pause between stop and start on device change
            stop_wait: Bounded wait for the source stop in stop_server()
            device: Initial device preference
            scheduler: Idle timer backend (real timers if None)
            server_factory: Builds a fresh StreamingServer per start_server()
        """
        self.cache = cache
        self.source = source
        self.idle_timeout = idle_timeout
        self.restart_pause = restart_pause
        self.stop_wait = stop_wait

        self._server_factory = server_factory or (lambda: StreamingServer(cache))

        # Guards client count, state, device, idle timer and executor submits
        self._lock = threading.Lock()
        # Serializes start_server()/stop_server()
        self._server_lock = threading.Lock()

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="producer")
        self._idle_timer = IdleTimer(idle_timeout, self._on_idle_timeout, scheduler)

        self._client_count: int = 0
        self._state = LifecycleState.IDLE
        self._device = device
        self._server: Optional[StreamingServer] = None
        self._last_error: Optional[str] = None
        self._closed: bool = False

        # Only touched from the producer executor
        self._producer_running: bool = False
        self._producer_device: Optional[DevicePreference] = None

        self.metrics = LifecycleMetrics()

        logger.info(
            f"LifecycleController initialized: idle_timeout={idle_timeout}s, "
            f"device={device.value}"
        )

    # =========================================================================
    # Status
    # =========================================================================

    @property
    def client_count(self) -> int:
        with self._lock:
            return self._client_count

    @property
    def state(self) -> LifecycleState:
        with self._lock:
            return self._state

    @property
    def device(self) -> DevicePreference:
        with self._lock:
            return self._device

    @property
    def is_server_listening(self) -> bool:
        server = self._server
        return server is not None and server.is_listening

    @property
    def is_producer_active(self) -> bool:
        return self._producer_running

    @property
    def idle_shutdown_pending(self) -> bool:
        with self._lock:
            return self._idle_timer.is_pending

    @property
    def server(self) -> Optional[StreamingServer]:
        """Current streaming server, None while stopped."""
        return self._server

    def status(self) -> ServiceStatus:
        """Consistent snapshot of server, producer and client state."""
        server = self._server
        listening = server is not None and server.is_listening
        with self._lock:
            return ServiceStatus(
                server=ServerLifecycle.LISTENING if listening else ServerLifecycle.STOPPED,
                port=server.port if listening else None,
                lifecycle=self._state,
                producer_active=self._producer_running,
                idle_shutdown_pending=self._idle_timer.is_pending,
                client_count=self._client_count,
                device=self._device,
                last_error=self._last_error,
            )

    def metrics_snapshot(self) -> dict:
        """Lifecycle, server and cache counters in one dict."""
        server = self._server
        return {
            "lifecycle": self.metrics.to_dict(),
            "server": (
                {**server.metrics.to_dict(), "active": server.client_count}
                if server is not None else None
            ),
            "cache": self.cache.metrics(),
        }

    # =========================================================================
    # Server control
    # =========================================================================

    def start_server(self, port: int) -> int:
        """
        Start listening for viewers. No-op if already listening.

        The frame source is not started here; it starts with the first viewer.

        Args:
            port: TCP port for the stream (0 = ephemeral)

        Returns:
            The bound port

        Raises:
            BindError: If the port is unavailable; the server stays stopped
        """
        with self._server_lock:
            if self._closed:
                raise RuntimeError("LifecycleController is closed")

            current = self._server
            if current is not None and current.is_listening:
                return current.port
            if current is not None:
                # Left over from a failed listener
                current.shutdown()
                self._server = None

            server = self._server_factory()
            server.on_client_connected = self.client_connected
            server.on_client_disconnected = self.client_disconnected
            server.on_listener_error = self._on_listener_error

            bound_port = server.start(port)
            self._server = server
            with self._lock:
                self._last_error = None

        logger.info(f"Stream server started on port {bound_port}")
        return bound_port

    def stop_server(self) -> None:
        """
        Stop the server and the frame source. No-op if already stopped.

        Closes the listener, force-closes every viewer and stops the source
        immediately, without waiting for the idle timeout. Returns once the
        source stop has run (bounded by stop_wait), so a following
        start_server() never races it.
        """
        with self._server_lock:
            server = self._server
            if server is None:
                return
            self._server = None

            server.shutdown()

            with self._lock:
                self._idle_timer.cancel()
                self._state = LifecycleState.IDLE
                future = self._submit(self._stop_producer, "server stopped")

            self._wait(future, self.stop_wait, "producer stop")

        logger.info("Stream server stopped")

    def _on_listener_error(self, error: ListenerFatalError) -> None:
        """Accept loop died: record it and tear the server down."""
        with self._lock:
            self._last_error = str(error)
        logger.error(f"Streaming listener failed, stopping server: {error}")
        self.stop_server()

    # =========================================================================
    # Viewer events
    # =========================================================================

    def client_connected(self) -> None:
        """A viewer connected. Starts the source on 0 -> 1."""
        with self._lock:
            previous = self._client_count
            self._client_count += 1
            logger.info(f"Client connected, count now {self._client_count}")

            if previous == 0:
                if self._idle_timer.cancel():
                    logger.info("Idle shutdown cancelled: client connected")
                self._state = LifecycleState.ACTIVE
                self._submit(self._start_producer, "first client connected")

    def client_disconnected(self) -> None:
        """A viewer left. Arms the idle timer on 1 -> 0."""
        with self._lock:
            if self._client_count == 0:
                # Each worker reports exactly once, so this means a caller
                # outside the server reported a disconnect it never connected
                logger.warning("Client disconnect with no connected clients, ignoring")
                return

            self._client_count -= 1
            logger.info(f"Client disconnected, count now {self._client_count}")

            if self._client_count == 0:
                self._idle_timer.schedule()
                logger.info(
                    f"Last client left, stopping producer in {self.idle_timeout:g}s "
                    f"unless a client reconnects"
                )

    def _on_idle_timeout(self, token: int) -> None:
        """Idle timer callback; re-checks the count before acting."""
        with self._lock:
            if not self._idle_timer.claim(token):
                logger.debug("Stale idle timer ignored")
                return
            if self._client_count > 0:
                logger.info("Idle shutdown skipped: clients reconnected")
                return

            logger.info("Idle timeout reached, stopping producer")
            self.metrics.idle_timeouts += 1
            self._state = LifecycleState.IDLE
            self._submit(self._stop_producer, "idle timeout")

    # =========================================================================
    # Device selection
    # =========================================================================

    def set_device(self, device: DevicePreference) -> bool:
        """
        Change the device preference.

        While Active the source is restarted on the new device; while Idle
        only the preference is recorded.

        Returns:
            True if the preference changed.
        """
        with self._lock:
            if device == self._device:
                logger.debug(f"Device preference unchanged ({device.value})")
                return False

            self._device = device
            logger.info(f"Device preference changed to {device.value}")

            if self._state == LifecycleState.ACTIVE:
                self._submit(self._restart_producer)
            return True

    # =========================================================================
    # Producer executor jobs
    # =========================================================================

    def _start_producer(self, reason: str) -> None:
        if self._producer_running:
            logger.debug("Producer already running")
            with self._lock:
                self._state = LifecycleState.ACTIVE
            return

        device = self.device
        logger.info(f"Starting producer on {device.value} ({reason})")

        try:
            self.source.start(device)
        except ProducerStartError as e:
            logger.error(f"Producer start failed: {e}")
            self._abort_start()
            return
        except Exception:
            logger.exception("Unexpected error starting producer")
            self._abort_start()
            return

        self._producer_running = True
        self._producer_device = device
        with self._lock:
            self._state = LifecycleState.ACTIVE
            self.metrics.producer_starts += 1
        logger.info("Producer started")

    def _abort_start(self) -> None:
        """Release whatever a failed start left behind."""
        self._release_producer()
        with self._lock:
            self._state = LifecycleState.IDLE
            self.metrics.start_failures += 1

    def _stop_producer(self, reason: str) -> None:
        if not self._producer_running:
            with self._lock:
                self._state = LifecycleState.IDLE
            return

        logger.info(f"Stopping producer ({reason})")
        self._release_producer()
        with self._lock:
            self._state = LifecycleState.IDLE
            self.metrics.producer_stops += 1
        logger.info("Producer stopped")

    def _release_producer(self) -> None:
        """Single cleanup path for every start attempt: stop source, drop frame."""
        try:
            self.source.stop()
        except Exception as e:
            logger.error(f"Producer stop failed: {e}")
        finally:
            self._producer_running = False
            self._producer_device = None
            self.cache.clear()

    def _restart_producer(self) -> None:
        if not self._producer_running:
            logger.info("Producer not running, new device applies on next start")
            return

        device = self.device
        if device == self._producer_device:
            # A queued start already picked up the new preference
            logger.debug(f"Producer already running on {device.value}")
            return

        with self._lock:
            self.metrics.device_restarts += 1
        self._stop_producer("device change")
        time.sleep(self.restart_pause)
        self._start_producer("device change")

    # =========================================================================
    # Executor helpers
    # =========================================================================

    def _submit(self, fn: Callable, *args) -> Optional[Future]:
        """Queue a producer job. Caller holds self._lock."""
        if self._closed:
            logger.debug(f"Controller closed, dropping {fn.__name__}")
            return None
        return self._executor.submit(fn, *args)

    def _wait(self, future: Optional[Future], timeout: Optional[float], what: str) -> None:
        if future is None:
            return
        try:
            future.result(timeout=timeout)
        except FutureTimeoutError:
            logger.warning(f"Timed out after {timeout}s waiting for {what}")

    def wait_for_producer(self, timeout: Optional[float] = None) -> None:
        """Block until every producer job queued so far has run."""
        with self._lock:
            future = self._submit(lambda: None)
        self._wait(future, timeout, "producer jobs")

    def close(self) -> None:
        """Stop server and source, then shut the producer executor down."""
        self.stop_server()
        with self._lock:
            if self._closed:
                return
            self._idle_timer.cancel()
            self._submit(self._stop_producer, "controller closed")
            self._closed = True
        self._executor.shutdown(wait=True)
        logger.info("LifecycleController closed")
