"""
=============================================================================
CONNECTION: THE RELAY ENGINE
=============================================================================

A Connection is a bidirectional pipe between two sockets:

    ┌────────┐  inbound socket  ┌────────────┐  outbound socket  ┌────────┐
    │ client │ ◄──────────────► │ Connection │ ◄───────────────► │ remote │
    └────────┘                  └─────┬──────┘                   └────────┘
                                      │
                                      │ data_in / data_out / ...
                                      ▼
                                  listeners

The Server hands it the socket of an accepted client. The Connection then
gets an outbound socket from its socket factory and forwards every byte,
in both directions, untouched.

=============================================================================
ONE THREAD PER CONNECTION
=============================================================================

Each Connection runs its relay loop in its own thread and blocks freely
in select() and recv(). The accept loop never waits on a client.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          Relay Loop                                  │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   outbound needed up front?  → factory() now                        │
    │                                                                      │
    │   loop:                                                              │
    │       select([inbound, outbound])   (inbound only until outbound    │
    │       │                              exists)                         │
    │       │                                                              │
    │       ├── inbound ready:  recv(4096)                                │
    │       │      b""  → EOF, stop                                       │
    │       │      data → broadcast data_in → outbound.sendall(data)      │
    │       │                                 (factory() on first use)    │
    │       │                                                              │
    │       └── outbound ready: recv(4096)                                │
    │              b""  → EOF, stop                                       │
    │              data → broadcast data_out → inbound.sendall(data)      │
    │                                                                      │
    │   on exception: broadcast main_loop_error, re-raise                 │
    │   always:       close both sockets, broadcast end_connection        │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

recv() is a PARTIAL read: it returns whatever the kernel has, up to the
block size. Listeners therefore see arbitrary slices of the stream, never
whole messages (see devproxy.http for putting them back together).

=============================================================================
"""

import logging
import select
import socket
import ssl
import threading
import uuid
from enum import Enum
from typing import Callable, Iterable, Optional

from ..events import Publisher


logger = logging.getLogger(__name__)


DEFAULT_MAX_BLOCK_SIZE = 4096


class ConnectionState(Enum):
    """
    Connection lifecycle states.

        NEW ──call()──► AWAITING_OUTBOUND ──outbound created──► RELAYING ──► CLOSED
                 └────────────────────────────────────────────────┘
                  (factories that don't need the first packet)
    """
    NEW = "new"
    AWAITING_OUTBOUND = "awaiting_outbound"
    RELAYING = "relaying"
    CLOSED = "closed"


class Connection(Publisher):
    """
    Relays bytes between one inbound and one outbound socket.

    Broadcasts:
        start_connection(connection)
        data_in(connection, data)
        data_out(connection, data)
        main_loop_error(connection, error)
        end_connection(connection)

    Usage:
        conn = Connection(client_socket, TCPSocketFactory("example.com", 80))
        conn.subscribe(ConsoleReporter())
        conn.call()          # returns immediately, relay runs in a thread
        conn.join_thread()

    Attributes:
        id: Short unique identifier, handy in logs.
        in_socket: The client socket (owned by this connection).
        out_socket: The remote socket, None until created.
        state: Current ConnectionState.
    """

    def __init__(
        self,
        in_socket: socket.socket,
        socket_factory: Callable[[], socket.socket],
        max_block_size: int = DEFAULT_MAX_BLOCK_SIZE,
        inbound_filters: Iterable[Callable[[bytes], bytes]] = (),
    ):
        """
        Args:
            in_socket: Accepted client socket.
            socket_factory: Callable producing the outbound socket. If it has
                            `requires_first_packet = True`, it is only called
                            once the client has sent its first block.
            max_block_size: Upper bound for a single recv().
            inbound_filters: Callables applied, in order, to each inbound
                             block before it is broadcast and forwarded
                             (e.g. HostHeaderRewriter).
        """
        self.id = str(uuid.uuid4())[:8]
        self.in_socket = in_socket
        self.out_socket: Optional[socket.socket] = None
        self.socket_factory = socket_factory
        self.max_block_size = max_block_size
        self.inbound_filters = list(inbound_filters)

        self.state = ConnectionState.NEW
        self.thread: Optional[threading.Thread] = None

        self._finished = threading.Event()
        self._done_callbacks: list[Callable[["Connection"], None]] = []
        self._callbacks_lock = threading.Lock()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @property
    def requires_first_packet(self) -> bool:
        return getattr(self.socket_factory, "requires_first_packet", False)

    def call(self) -> "Connection":
        """
        Start relaying in a new thread. Returns immediately.

        Raises:
            RuntimeError: If the connection was already started.
        """
        if self.thread is not None:
            raise RuntimeError(f"Connection {self.id} already started")

        if self.requires_first_packet:
            self.state = ConnectionState.AWAITING_OUTBOUND
        else:
            self.state = ConnectionState.RELAYING

        self.broadcast("start_connection", self)

        self.thread = threading.Thread(
            target=self._run, name=f"Connection-{self.id}", daemon=True
        )
        self.thread.start()
        return self

    def alive(self) -> bool:
        return self.thread is not None and self.thread.is_alive()

    def join_thread(self, timeout: Optional[float] = None) -> None:
        if self.thread is not None:
            self.thread.join(timeout)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the relay has finished. False on timeout."""
        return self._finished.wait(timeout)

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    def add_done_callback(self, callback: Callable[["Connection"], None]) -> None:
        """
        Run `callback(connection)` once the relay is over.

        Callbacks run on the relay thread after end_connection has been
        broadcast. If the relay is already over, the callback runs now.
        """
        with self._callbacks_lock:
            if not self._finished.is_set():
                self._done_callbacks.append(callback)
                return
        callback(self)

    # =========================================================================
    # RELAY LOOP (runs in self.thread)
    # =========================================================================

    def _run(self) -> None:
        try:
            self._relay_loop()
        finally:
            try:
                self._close_sockets()
                self.state = ConnectionState.CLOSED
                self.broadcast("end_connection", self)
            finally:
                self._finish()

    def _relay_loop(self) -> None:
        try:
            if not self.requires_first_packet:
                self._ensure_out_socket()

            while True:
                for sock in self._ready_sockets():
                    if not self._handle_socket(sock):
                        logger.debug(f"[{self.id}] End of stream")
                        return
        except Exception as e:
            self.broadcast("main_loop_error", self, e)
            raise

    def _ready_sockets(self) -> list:
        if self.out_socket is None:
            sockets = [self.in_socket]
        else:
            sockets = [self.in_socket, self.out_socket]

        # TLS may have decrypted data buffered that select() can't see
        buffered = [
            s for s in sockets
            if isinstance(s, ssl.SSLSocket) and s.pending()
        ]
        if buffered:
            return buffered

        readable, _, _ = select.select(sockets, [], [])
        return readable

    def _handle_socket(self, sock: socket.socket) -> bool:
        """Relay one block. Returns False at end of stream."""
        try:
            data = sock.recv(self.max_block_size)
        except ssl.SSLEOFError:
            # Remote closed without close_notify
            return False
        if not data:
            return False

        if sock is self.in_socket:
            for apply_filter in self.inbound_filters:
                data = apply_filter(data)
            self.broadcast("data_in", self, data)
            self._ensure_out_socket().sendall(data)
        else:
            self.broadcast("data_out", self, data)
            self.in_socket.sendall(data)
        return True

    def _ensure_out_socket(self) -> socket.socket:
        if self.out_socket is None:
            self.out_socket = self.socket_factory()
            self.state = ConnectionState.RELAYING
            logger.debug(f"[{self.id}] Outbound socket connected")
        return self.out_socket

    def _close_sockets(self) -> None:
        for sock in (self.in_socket, self.out_socket):
            if sock is None:
                continue
            try:
                sock.close()
            except OSError:
                pass  # Already closed

    def _finish(self) -> None:
        with self._callbacks_lock:
            self._finished.set()
            callbacks, self._done_callbacks = self._done_callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception(f"[{self.id}] Done callback failed")

    def __repr__(self) -> str:
        return f"<Connection {self.id} {self.state.value}>"
