"""
Client Registry
===============

Tracks the streaming connections that are currently open so shutdown can
force-close all of them.

Design Rules:
    - The registry references connections, it does not own them; each
      connection's worker removes itself on exit
    - close_all() only closes sockets; it never removes entries, so the
      worker's own exit path stays the single place a disconnect fires
    - Safe for concurrent add/remove/enumerate from any thread
"""

import contextlib
import itertools
import logging
import socket
import threading
from typing import List, Tuple


logger = logging.getLogger(__name__)


_connection_ids = itertools.count(1)


class ClientConnection:
    """
    One accepted streaming socket.

    Attributes:
        sock: Accepted socket
        address: Peer address tuple
        connection_id: Process-unique id, used in log lines
    """

    def __init__(self, sock: socket.socket, address: Tuple) -> None:
        self.sock = sock
        self.address = address
        self.connection_id: int = next(_connection_ids)
        self._closed = threading.Event()

    @property
    def alive(self) -> bool:
        """Whether close() has not been called yet."""
        return not self._closed.is_set()

    def close(self) -> None:
        """
        Close the socket. Idempotent and safe from any thread.

        The socket is shut down before closing so a worker blocked in
        send() on another thread is woken up immediately.
        """
        if self._closed.is_set():
            return
        self._closed.set()
        with contextlib.suppress(OSError):
            self.sock.shutdown(socket.SHUT_RDWR)
        with contextlib.suppress(OSError):
            self.sock.close()

    def __repr__(self) -> str:
        return (
            f"ClientConnection(id={self.connection_id}, "
            f"address={self.address}, alive={self.alive})"
        )


class ClientRegistry:
    """
    Thread-safe set of open ClientConnections.

    Example:
        registry = ClientRegistry()
        registry.add(conn)
        ...
        registry.close_all()   # on shutdown
        registry.remove(conn)  # from the connection's own worker
    """

    def __init__(self) -> None:
        self._clients: set = set()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._clients)

    def __contains__(self, client: ClientConnection) -> bool:
        with self._lock:
            return client in self._clients

    def add(self, client: ClientConnection) -> None:
        """Start tracking a connection."""
        with self._lock:
            self._clients.add(client)

    def remove(self, client: ClientConnection) -> bool:
        """
        Stop tracking a connection.

        Returns:
            True if the connection was tracked, False otherwise.
        """
        with self._lock:
            if client in self._clients:
                self._clients.discard(client)
                return True
            return False

    def snapshot(self) -> List[ClientConnection]:
        """Copy of the currently tracked connections."""
        with self._lock:
            return list(self._clients)

    def close_all(self) -> int:
        """
        Force-close every tracked connection.

        Returns:
            Number of connections that were still open.
        """
        closed = 0
        for client in self.snapshot():
            if client.alive:
                client.close()
                closed += 1
        if closed:
            logger.info(f"Force-closed {closed} streaming client(s)")
        return closed

