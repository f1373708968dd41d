"""
=============================================================================
SOCKET FACTORIES
=============================================================================

A Connection never decides on its own where to send the bytes it reads
from the client. It asks a socket factory: "give me the outbound socket".

    ┌────────────┐   factory()   ┌──────────────────────┐
    │ Connection │ ────────────► │ TCPSocketFactory     │  fixed host:port
    └────────────┘               │ SSLSocketFactory     │  TLS on top of another factory
                                 │ HTTPHostSocketFactory│  pick host from "Host:" header
                                 └──────────────────────┘

A factory is just a callable returning a connected socket, so a lambda
works too:

    Connection(client_socket, lambda: socket.create_connection(("db", 5432)))

Factories may also declare `requires_first_packet = True`. The Connection
then waits for the client to send something before asking for the socket,
and the factory gets to look at that first packet through `data_in`.

=============================================================================
TLS TERMINATION
=============================================================================

    client ──plain──► proxy ══TLS══► https://remote

SSLSocketFactory lets the proxy talk plain text to the client and encrypted
to the remote, so everything passing through stays readable by listeners.
To forward TLS untouched, use a TCPSocketFactory instead (you just won't be
able to see inside).

=============================================================================
"""

import logging
import socket
import ssl
from enum import Enum
from typing import Mapping, Optional

from ..events import Publisher
from ..http.headers import HeaderParser


logger = logging.getLogger(__name__)


DEFAULT_HTTP_PORT = 80


class HostLookupError(LookupError):
    """The Host header is missing or has no entry in the host mapping."""


class SingleUseError(RuntimeError):
    """A single-use factory was asked to serve a second connection."""


def parse_address(address: str, default_port: int = DEFAULT_HTTP_PORT) -> tuple[str, int]:
    """
    Split "host[:port]" into (host, port).

        parse_address("10.0.0.1")       → ("10.0.0.1", 80)
        parse_address("10.0.0.1:8080")  → ("10.0.0.1", 8080)
    """
    if address.startswith("[") and "]" in address:
        # [::1]:8080
        host, _, rest = address[1:].partition("]")
        port = rest.lstrip(":")
        return host, int(port) if port else default_port

    host, sep, port = address.rpartition(":")
    if not sep or ":" in host:
        return address, default_port
    try:
        return host, int(port)
    except ValueError:
        raise ValueError(f"Invalid port in address: {address!r}")


class TCPSocketFactory:
    """
    Connects to the same host and port every time.

    The most vanilla factory; the right one when everything goes to one
    remote.
    """

    requires_first_packet = False

    def __init__(self, remote_host: str, remote_port: int, timeout: Optional[float] = None):
        self.remote_host = remote_host
        self.remote_port = int(remote_port)
        self.timeout = timeout

    @property
    def server_hostname(self) -> str:
        return self.remote_host

    def __call__(self) -> socket.socket:
        logger.debug(f"Connecting to {self.remote_host}:{self.remote_port}")
        sock = socket.create_connection(
            (self.remote_host, self.remote_port), timeout=self.timeout
        )
        # Relaying is interactive traffic, send blocks right away
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        # The connect timeout must not turn into a read timeout
        sock.settimeout(None)
        return sock

    def __repr__(self) -> str:
        return f"TCPSocketFactory({self.remote_host!r}, {self.remote_port})"


def client_context(verify: bool = True) -> ssl.SSLContext:
    """
    Build a TLS client context.

    verify=False skips certificate and hostname checks, which is what you
    want against a staging box with a self-signed certificate.
    """
    context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
    if not verify:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
    return context


class SSLSocketFactory:
    """
    Wraps the socket of another factory in a TLS client connection.

    Usage:
        factory = SSLSocketFactory(TCPSocketFactory("example.com", 443))
        factory = SSLSocketFactory.to("example.com", 443, verify=False)

    The SNI name (and the name checked against the certificate) is
    `server_hostname` if given, else whatever the inner factory reports.
    """

    def __init__(
        self,
        inner,
        server_hostname: Optional[str] = None,
        context: Optional[ssl.SSLContext] = None,
        verify: bool = True,
    ):
        self.inner = inner
        self._server_hostname = server_hostname
        self.context = context or client_context(verify)

    @classmethod
    def to(cls, remote_host: str, remote_port: int, timeout: Optional[float] = None,
           **kwargs) -> "SSLSocketFactory":
        return cls(TCPSocketFactory(remote_host, remote_port, timeout=timeout), **kwargs)

    @property
    def requires_first_packet(self) -> bool:
        return getattr(self.inner, "requires_first_packet", False)

    @property
    def server_hostname(self) -> Optional[str]:
        return self._server_hostname or getattr(self.inner, "server_hostname", None)

    def data_in(self, connection, data: bytes) -> None:
        # Lets a Host-routed inner factory see the first packet
        handler = getattr(self.inner, "data_in", None)
        if handler is not None:
            handler(connection, data)

    def __call__(self) -> socket.socket:
        raw = self.inner()
        try:
            # wrap_socket performs the handshake before returning
            return self.context.wrap_socket(raw, server_hostname=self.server_hostname)
        except (ssl.SSLError, OSError):
            raw.close()
            raise

    def __repr__(self) -> str:
        return f"SSLSocketFactory({self.inner!r})"


class FactoryState(Enum):
    AWAITING_FIRST_PACKET = "awaiting_first_packet"
    READY = "ready"
    CONSUMED = "consumed"


class HTTPHostSocketFactory(Publisher):
    """
    Dispatches HTTP traffic to different hosts based on the Host header.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         Lifecycle                                    │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   AWAITING_FIRST_PACKET                                             │
    │        │  data_in(conn, b"GET / HTTP/1.1\\r\\nHost: foo...")          │
    │        ▼                                                             │
    │   READY  (first packet buffered, later packets ignored)             │
    │        │  factory()                                                  │
    │        │    Host: foo.example.com                                    │
    │        │    mapping["foo.example.com"] = "10.0.0.1:8080"            │
    │        │    connect(("10.0.0.1", 8080))                             │
    │        ▼                                                             │
    │   CONSUMED  (any further use raises SingleUseError)                 │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    The factory must be subscribed to its Connection's `data_in` events:

        factory = HTTPHostSocketFactory({"foo.example.com": "10.0.0.1:8080"})
        Connection(sock, factory).subscribe(factory, on="data_in")

    Point the relevant names at 127.0.0.1 in /etc/hosts so clients end up
    at the proxy.

    SINGLE USE: it remembers exactly one first packet. Create one per
    Connection.

    Known limitation: the Host header has to be in the very first TCP
    segment the client sends. A request head split over several segments
    is not reassembled.

    Broadcasts `header(key, value)` for each header of the first packet.
    """

    requires_first_packet = True

    def __init__(self, host_mapping: Mapping[str, str], timeout: Optional[float] = None):
        self.host_mapping = dict(host_mapping)
        self.timeout = timeout
        self.state = FactoryState.AWAITING_FIRST_PACKET
        self.first_packet: Optional[bytes] = None
        self._connection = None
        self._host_header: Optional[str] = None

    def data_in(self, connection, data: bytes) -> None:
        if self._connection is None:
            self._connection = connection
        elif connection is not self._connection:
            raise SingleUseError(
                "HTTPHostSocketFactory is single use; create one per connection"
            )

        if self.state is FactoryState.AWAITING_FIRST_PACKET:
            self.first_packet = bytes(data)
            self.state = FactoryState.READY

    @property
    def server_hostname(self) -> Optional[str]:
        """The Host header's name part, once the factory has been called."""
        if self._host_header is None:
            return None
        return parse_address(self._host_header)[0]

    def resolve(self) -> tuple[str, int]:
        """Find the (address, port) the first packet should be sent to."""
        if self.state is FactoryState.AWAITING_FIRST_PACKET:
            raise RuntimeError("No request data received yet, can't pick a host")

        parser = HeaderParser().on(
            "header", lambda key, value: self.broadcast("header", key, value)
        )
        headers = parser.parse(self.first_packet)

        host = headers.get("host")
        if not host:
            raise HostLookupError("First packet has no Host header")
        self._host_header = host

        address = self.host_mapping.get(host)
        if address is None:
            # "Host: foo.example.com:8080" may be mapped without the port
            address = self.host_mapping.get(parse_address(host)[0])
        if address is None:
            raise HostLookupError(f"No mapping for host {host!r}")

        return parse_address(address, DEFAULT_HTTP_PORT)

    def __call__(self) -> socket.socket:
        if self.state is FactoryState.CONSUMED:
            raise SingleUseError("HTTPHostSocketFactory has already produced its socket")

        remote_host, remote_port = self.resolve()
        self.state = FactoryState.CONSUMED
        logger.debug(f"Routing Host {self._host_header!r} to {remote_host}:{remote_port}")
        return TCPSocketFactory(remote_host, remote_port, timeout=self.timeout)()

    def __repr__(self) -> str:
        return f"HTTPHostSocketFactory({len(self.host_mapping)} hosts, {self.state.value})"
