"""
=============================================================================
PROXY SERVER: ACCEPT LOOP AND ADMISSION CONTROL
=============================================================================

The Server listens on a local port, accepts clients, and turns every
accepted socket into a running Connection:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         Accept Loop                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   bind() + listen()                                                  │
    │       │                                                              │
    │       ▼                                                              │
    │   accept()  ◄──────────────────────────────────────────┐            │
    │       │                                                 │            │
    │       ├──► connection_factory(in_socket)                │            │
    │       ├──► broadcast new_connection                     │            │
    │       ├──► register + connection.call()  (new thread)   │            │
    │       ├──► reap finished connections                    │            │
    │       │                                                 │            │
    │       └──► at max_connections?                          │            │
    │               yes: wait for one to finish, reap ────────┤            │
    │               no  ──────────────────────────────────────┘            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
ADMISSION CONTROL
=============================================================================

The server never rejects a client. When `max_connections` relays are
running it simply stops calling accept(). New clients queue up in the
kernel's listen backlog until a slot frees.

Every Connection signals its end through a done callback, which wakes the
accept loop through a Condition. `reap_interval` is only the upper bound of
a wait, in case a wakeup is missed.

=============================================================================
SHUTDOWN
=============================================================================

close() stops the accept loop (within `accept_timeout` seconds, since
accept() wakes up that often to check) and closes the listening socket.
Connections that are already relaying are left alone; they end when their
peers hang up.

=============================================================================
"""

import logging
import socket
import threading
from typing import Callable, Optional, Tuple

from ..events import Publisher
from .connection import Connection


logger = logging.getLogger(__name__)


DEFAULT_MAX_CONNECTIONS = 5


class Server(Publisher):
    """
    Accepts TCP clients and runs a Connection for each.

    Broadcasts:
        new_connection(connection)
        dead_connection(connection)

    Usage:
        def connection_factory(in_socket):
            factory = TCPSocketFactory("example.com", 80)
            return Connection(in_socket, factory).subscribe(ConsoleReporter())

        server = Server(8080, connection_factory)
        server.call()   # blocks until close()
    """

    def __init__(
        self,
        listen_port: int,
        connection_factory: Callable[[socket.socket], Connection],
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        host: str = "127.0.0.1",
        backlog: int = 128,
        reap_interval: float = 1.0,
        accept_timeout: float = 1.0,
    ):
        """
        Args:
            listen_port: Local port to listen on (0 lets the OS pick one,
                         see `address` once `ready` is set).
            connection_factory: Called with each accepted socket; returns a
                                Connection that is wired up but not started.
            max_connections: Upper bound of simultaneously relaying
                             connections.
            host: Local interface to bind.
            backlog: listen() backlog; where clients wait while the server
                     is at max_connections.
            reap_interval: Longest wait between reap attempts while full.
            accept_timeout: How often accept() wakes up to notice close().
        """
        self.listen_port = int(listen_port)
        self.connection_factory = connection_factory
        self.max_connections = max_connections
        self.host = host
        self.backlog = backlog
        self.reap_interval = reap_interval
        self.accept_timeout = accept_timeout

        self._socket: Optional[socket.socket] = None
        self._running = False
        self._stop = threading.Event()
        self._connections: list[Connection] = []
        # Guards _connections; notified whenever a connection finishes
        self._admission = threading.Condition(threading.Lock())

        self.ready = threading.Event()

    @classmethod
    def from_config(cls, config, connection_factory) -> "Server":
        return cls(
            config.listen_port,
            connection_factory,
            max_connections=config.max_connections,
            host=config.listen_host,
            backlog=config.backlog,
            reap_interval=config.reap_interval,
            accept_timeout=config.accept_timeout,
        )

    # =========================================================================
    # INTROSPECTION
    # =========================================================================

    @property
    def address(self) -> Tuple[str, int]:
        """The bound (host, port); the real port once listening."""
        if self._socket is not None:
            try:
                return self._socket.getsockname()[:2]
            except OSError:
                pass
        return (self.host, self.listen_port)

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def connections(self) -> list[Connection]:
        """Snapshot of the connections currently registered."""
        with self._admission:
            return list(self._connections)

    # =========================================================================
    # SERVER LOOP
    # =========================================================================

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        # Restarting the proxy shouldn't hit "Address already in use"
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.settimeout(self.accept_timeout)
        return sock

    def call(self) -> None:
        """
        Listen and relay until close() is called. Blocks.

        Raises:
            OSError: If binding fails or accept() fails while running.
                     Errors inside a Connection never get here.
        """
        self._socket = self._create_socket()
        try:
            self._socket.bind((self.host, self.listen_port))
        except OSError as e:
            logger.error(f"Failed to bind to {self.host}:{self.listen_port}: {e}")
            self._socket.close()
            self._socket = None
            raise

        self._socket.listen(self.backlog)
        self._running = True
        host, port = self.address
        logger.info(f"Proxy listening on {host}:{port}")
        self.ready.set()

        try:
            self._accept_loop()
        finally:
            self._running = False
            self._close_socket()
            logger.info("Proxy stopped accepting connections")

    def _accept_loop(self) -> None:
        while not self._stop.is_set():
            try:
                in_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._stop.is_set():
                    break
                logger.error(f"Accept error: {e}")
                raise

            # Sockets accepted from a listener with a timeout may inherit it
            in_socket.settimeout(None)
            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            connection = self.connection_factory(in_socket)
            self.broadcast("new_connection", connection)

            with self._admission:
                self._connections.append(connection)
            connection.add_done_callback(self._connection_finished)
            connection.call()

            self.reap_connections()
            self._wait_for_slot()

    def _connection_finished(self, connection: Connection) -> None:
        with self._admission:
            self._admission.notify_all()

    def _wait_for_slot(self) -> None:
        while not self._stop.is_set():
            with self._admission:
                if len(self._connections) < self.max_connections:
                    return
                logger.debug(
                    f"At {self.max_connections} connections, waiting for one to finish"
                )
                self._admission.wait(self.reap_interval)
            self.reap_connections()

    def reap_connections(self) -> list[Connection]:
        """
        Drop connections whose relay thread has ended.

        Each one gets a dead_connection broadcast and is joined. Returns the
        reaped connections.
        """
        with self._admission:
            dead = [c for c in self._connections if c.finished or not c.alive()]
            self._connections = [c for c in self._connections if c not in dead]

        for connection in dead:
            self.broadcast("dead_connection", connection)
            connection.join_thread()
            logger.debug(f"Reaped connection {connection.id}")
        return dead

    # =========================================================================
    # SHUTDOWN
    # =========================================================================

    def close(self) -> None:
        """
        Stop accepting and close the listening socket.

        Safe to call from any thread, and more than once. Running
        connections are not interrupted.
        """
        self._stop.set()
        with self._admission:
            self._admission.notify_all()

    def _close_socket(self) -> None:
        if self._socket is not None:
            try:
                self._socket.close()
            except OSError:
                pass
            self._socket = None
