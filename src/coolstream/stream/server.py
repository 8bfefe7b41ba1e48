"""
Streaming Server
================

Threaded TCP server speaking the multipart JPEG stream protocol.

This module provides the StreamingServer class which:
    - Listens on a configurable port and accepts viewers on a background thread
    - Runs one worker thread per viewer that pushes the newest cached frame
      at a fixed pacing interval
    - Reports every viewer exactly once as connected and exactly once as
      disconnected
    - Force-closes every viewer on shutdown

Design Rules:
    - Request bytes are drained, never parsed; every viewer gets the stream
    - Per-client I/O errors end only that client's worker
    - Only bind failures and fatal listener errors leave this module
    - Workers wait on the stop event, not time.sleep, so shutdown wakes them
"""

import contextlib
import logging
import selectors
import socket
import threading
import time
from typing import Callable, Optional, Tuple

from coolstream.stream.cache import FrameCache
from coolstream.stream.protocol import RESPONSE_HEADER, part_header
from coolstream.stream.registry import ClientConnection, ClientRegistry


logger = logging.getLogger(__name__)


# =============================================================================
# Errors
# =============================================================================

class BindError(Exception):
    """Raised when the listening socket cannot be opened."""

    def __init__(self, host: str, port: int, cause: Exception) -> None:
        super().__init__(f"Cannot listen on {host}:{port}: {cause}")
        self.host = host
        self.port = port
        self.cause = cause


class ListenerFatalError(Exception):
    """The accept loop died for a reason other than a requested shutdown."""


class ClientIOError(Exception):
    """A read, write or poll on one streaming connection failed."""


# =============================================================================
# Metrics
# =============================================================================

class StreamServerMetrics:
    """Counters for StreamingServer observability."""

    __slots__ = (
        "accepted",
        "frames_sent",
        "disconnects",
        "accept_errors",
    )

    def __init__(self) -> None:
        self.accepted: int = 0
        self.frames_sent: int = 0
        self.disconnects: int = 0
        self.accept_errors: int = 0

    def to_dict(self) -> dict:
        """Export metrics as dict."""
        return {
            "accepted": self.accepted,
            "frames_sent": self.frames_sent,
            "disconnects": self.disconnects,
            "accept_errors": self.accept_errors,
        }


# =============================================================================
# Server
# =============================================================================

class StreamingServer:
    """
    Multipart JPEG server for any number of concurrent viewers.

    A server instance is single-use: once shut down it cannot be started
    again. Create a new instance to listen again.

    Attributes:
        cache: FrameCache the workers read from
        registry: Open connections, used to force-close on shutdown
        host: Bind address
        frame_interval: Seconds between two frames sent to one viewer
        retry_interval: Seconds between polls while no frame is cached
        metrics: Operational counters

    Example:
        server = StreamingServer(
            cache,
            on_client_connected=controller.client_connected,
            on_client_disconnected=controller.client_disconnected,
        )
        port = server.start(8080)
        ...
        server.shutdown()
    """

    def __init__(
        self,
        cache: FrameCache,
        registry: Optional[ClientRegistry] = None,
        host: str = "0.0.0.0",
        frame_interval: float = 0.1,
        retry_interval: float = 0.05,
        send_timeout: float = 10.0,
        accept_poll_interval: float = 0.5,
        shutdown_join_timeout: float = 2.0,
        on_client_connected: Optional[Callable[[], None]] = None,
        on_client_disconnected: Optional[Callable[[], None]] = None,
        on_listener_error: Optional[Callable[[ListenerFatalError], None]] = None,
    ) -> None:
        """
        Initialize streaming server.

        Args:
            cache: Source of frames for every viewer
            registry: Connection registry (a fresh one if None)
            host: Bind address
            frame_interval: Pacing delay after each sent frame
            retry_interval: Delay while no frame is available
            send_timeout: Socket write timeout per viewer
            accept_poll_interval: Accept timeout used to re-check the running flag
            shutdown_join_timeout: Bounded wait for threads on shutdown
            on_client_connected: Called once per viewer before its first byte
            on_client_disconnected: Called once per viewer after it is gone
            on_listener_error: Called if the accept loop dies unexpectedly
        """
        self.cache = cache
        self.registry = registry if registry is not None else ClientRegistry()
        self.host = host
        self.frame_interval = frame_interval
        self.retry_interval = retry_interval
        self.send_timeout = send_timeout
        self.accept_poll_interval = accept_poll_interval
        self.shutdown_join_timeout = shutdown_join_timeout

        self.on_client_connected = on_client_connected
        self.on_client_disconnected = on_client_disconnected
        self.on_listener_error = on_listener_error

        # State
        self._listener: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._port: Optional[int] = None
        self._running = threading.Event()
        self._stop_event = threading.Event()
        self._shut_down: bool = False
        self._state_lock = threading.Lock()
        self._listener_error: Optional[ListenerFatalError] = None

        # Worker threads still running, joined on shutdown
        self._workers: set = set()
        self._workers_lock = threading.Lock()

        # Metrics
        self.metrics = StreamServerMetrics()
        self._metrics_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def is_listening(self) -> bool:
        """Whether the accept loop is running."""
        return self._running.is_set()

    @property
    def port(self) -> Optional[int]:
        """Bound port, None before start()."""
        return self._port

    @property
    def listener_error(self) -> Optional[ListenerFatalError]:
        """The error that killed the accept loop, if any."""
        return self._listener_error

    @property
    def client_count(self) -> int:
        """Number of open viewer connections."""
        return len(self.registry)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self, port: int) -> int:
        """
        Open the listening socket and start accepting viewers.

        Returns immediately; accepting happens on a background thread.

        Args:
            port: TCP port (0 picks an ephemeral port)

        Returns:
            The bound port

        Raises:
            BindError: If the port cannot be bound
            RuntimeError: If the server was already shut down
        """
        with self._state_lock:
            if self._shut_down:
                raise RuntimeError("StreamingServer cannot be restarted after shutdown")
            if self._running.is_set():
                return self._port

            try:
                listener = socket.create_server((self.host, port))
            except (OSError, OverflowError) as e:
                # OverflowError: port outside 0-65535
                logger.error(f"Failed to bind {self.host}:{port}: {e}")
                raise BindError(self.host, port, e) from e

            listener.settimeout(self.accept_poll_interval)
            self._listener = listener
            self._port = listener.getsockname()[1]
            self._running.set()

            self._accept_thread = threading.Thread(
                target=self._accept_loop,
                name=f"stream-accept-{self._port}",
                daemon=True,
            )
            self._accept_thread.start()

        logger.info(f"Streaming server listening on {self.host}:{self._port}")
        return self._port

    def shutdown(self) -> None:
        """
        Stop accepting, close the listener and force-close every viewer.

        Waits (bounded) for the accept thread and all workers to exit, so
        every disconnect callback has fired by the time this returns.
        Calling it again is a no-op.
        """
        with self._state_lock:
            if self._shut_down:
                return
            self._shut_down = True
            self._running.clear()
            self._stop_event.set()
            self._close_listener()

        self.registry.close_all()

        deadline = time.monotonic() + self.shutdown_join_timeout
        current = threading.current_thread()

        if self._accept_thread is not None and self._accept_thread is not current:
            self._accept_thread.join(max(0.0, deadline - time.monotonic()))

        with self._workers_lock:
            workers = [w for w in self._workers if w is not current]
        for worker in workers:
            worker.join(max(0.0, deadline - time.monotonic()))

        lingering = [w.name for w in workers if w.is_alive()]
        if lingering:
            logger.warning(f"Streaming workers still running after shutdown: {lingering}")

        logger.info(f"Streaming server on port {self._port} stopped")

    def _close_listener(self) -> None:
        """Shut down and close the listening socket, waking a blocked accept()."""
        listener = self._listener
        if listener is None:
            return
        with contextlib.suppress(OSError):
            listener.shutdown(socket.SHUT_RDWR)
        with contextlib.suppress(OSError):
            listener.close()

    # -------------------------------------------------------------------------
    # Accept loop
    # -------------------------------------------------------------------------

    def _accept_loop(self) -> None:
        """Accept viewers until shutdown or a fatal listener error."""
        listener = self._listener

        while self._running.is_set():
            try:
                sock, address = listener.accept()
            except socket.timeout:
                continue
            except ConnectionAbortedError as e:
                # Peer gave up during the handshake
                self._bump("accept_errors")
                logger.warning(f"Accept failed, continuing: {e}")
                continue
            except OSError as e:
                if not self._running.is_set():
                    break
                self._fail_listener(e)
                break

            self._spawn_worker(sock, address)

        logger.debug(f"Accept loop on port {self._port} exited")

    def _fail_listener(self, cause: OSError) -> None:
        """Record a fatal accept error and report it upward."""
        error = ListenerFatalError(f"Accept loop on port {self._port} failed: {cause}")
        error.__cause__ = cause
        self._listener_error = error
        self._running.clear()
        self._close_listener()

        logger.error(str(error))
        if self.on_listener_error is not None:
            self.on_listener_error(error)

    def _spawn_worker(self, sock: socket.socket, address: Tuple) -> None:
        """Register the connection and start its worker."""
        client = ClientConnection(sock, address)
        try:
            sock.settimeout(self.send_timeout)
        except OSError as e:
            logger.warning(f"Dropping client {address}: {e}")
            client.close()
            return

        self.registry.add(client)
        self._bump("accepted")

        # shutdown() may have run close_all() between accept() and add()
        if not self._running.is_set():
            client.close()

        worker = threading.Thread(
            target=self._serve_client,
            args=(client,),
            name=f"stream-client-{client.connection_id}",
            daemon=True,
        )
        with self._workers_lock:
            self._workers.add(worker)
            worker.start()

    # -------------------------------------------------------------------------
    # Per-client worker
    # -------------------------------------------------------------------------

    def _serve_client(self, client: ClientConnection) -> None:
        """Worker body: connect event, stream, then disconnect event."""
        logger.info(f"Client {client.connection_id} connected from {client.address}")
        try:
            if self.on_client_connected is not None:
                self.on_client_connected()
            self._stream(client)
        except ClientIOError as e:
            logger.info(f"Client {client.connection_id} stream ended: {e}")
        finally:
            client.close()
            self.registry.remove(client)
            self._bump("disconnects")
            logger.info(f"Client {client.connection_id} disconnected")
            try:
                if self.on_client_disconnected is not None:
                    self.on_client_disconnected()
            finally:
                with self._workers_lock:
                    self._workers.discard(threading.current_thread())

    def _stream(self, client: ClientConnection) -> None:
        """
        Send the response header, then frames until the viewer goes away.

        Raises:
            ClientIOError: On any socket failure
        """
        with selectors.DefaultSelector() as selector:
            try:
                selector.register(client.sock, selectors.EVENT_READ)
            except (OSError, ValueError) as e:
                raise ClientIOError(f"cannot poll socket: {e}") from e

            self._send(client, RESPONSE_HEADER)

            while self._running.is_set() and client.alive:
                if self._peer_closed(client, selector):
                    logger.debug(f"Client {client.connection_id} closed the connection")
                    return

                frame = self.cache.read()
                if frame is None:
                    self._stop_event.wait(self.retry_interval)
                    continue

                self._send(client, part_header(len(frame.data)))
                self._send(client, frame.data)
                self._bump("frames_sent")

                self._stop_event.wait(self.frame_interval)

    def _peer_closed(
        self,
        client: ClientConnection,
        selector: selectors.BaseSelector,
    ) -> bool:
        """
        Drain pending request bytes and detect EOF without blocking.

        Returns:
            True if the peer has closed its side.

        Raises:
            ClientIOError: If the socket is no longer usable
        """
        try:
            ready = selector.select(timeout=0)
        except (OSError, ValueError) as e:
            raise ClientIOError(f"poll failed: {e}") from e
        if not ready:
            return False

        try:
            data = client.sock.recv(4096)
        except socket.timeout:
            return False
        except OSError as e:
            raise ClientIOError(f"recv failed: {e}") from e
        return not data

    def _send(self, client: ClientConnection, data: bytes) -> None:
        try:
            client.sock.sendall(data)
        except OSError as e:
            raise ClientIOError(f"send failed: {e}") from e

    def _bump(self, counter: str) -> None:
        with self._metrics_lock:
            setattr(self.metrics, counter, getattr(self.metrics, counter) + 1)
