"""
pytest configuration and fixtures.
"""

import socket
import threading
import time
from typing import Callable, Generator, Optional
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from devproxy.core import Server
from devproxy.events import EVENTS


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request without a body."""
    return (
        b"GET /foo HTTP/1.1\r\n"
        b"Host: foo.bar\r\n"
        b"User-Agent: pytest\r\n"
        b"\r\n"
    )


@pytest.fixture
def content_length_request() -> bytes:
    """Request with Content-length: 20 followed by 9 bytes of the next message."""
    return (
        b"GET /foo HTTP/1.1\r\n"
        b"Host: foo.bar\r\n"
        b"Content-length: 20\r\n"
        b"\r\n"
        b"body,more body,even more body"
    )


@pytest.fixture
def chunked_request() -> bytes:
    """Request with a chunked body of two chunks and the zero chunk."""
    return (
        b"GET /foo HTTP/1.1\r\n"
        b"Host: foo.bar\r\n"
        b"Transfer-encoding: chunked\r\n"
        b"\r\n"
        b"5\r\nbody,\r\n"
        b"18\r\nmore body,even more body\r\n"
        b"0\r\n\r\n"
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll until predicate() is true or the timeout passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def recv_exactly(sock: socket.socket, size: int, timeout: float = 5.0) -> bytes:
    """Read exactly `size` bytes (or fewer if the peer closes)."""
    sock.settimeout(timeout)
    data = b""
    while len(data) < size:
        chunk = sock.recv(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def recv_until_closed(sock: socket.socket, timeout: float = 5.0) -> bytes:
    sock.settimeout(timeout)
    data = b""
    while True:
        chunk = sock.recv(4096)
        if not chunk:
            return data
        data += chunk


class EventCollector:
    """
    Listener that records every event it is offered.

    Answers to any event name in EVENTS, so it sees everything a
    publisher broadcasts.
    """

    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def __getattr__(self, name: str):
        if name not in EVENTS:
            raise AttributeError(name)

        def record(*args):
            with self._lock:
                self.events.append((name, *args))
        return record

    def names(self) -> list:
        with self._lock:
            return [event[0] for event in self.events]

    def of(self, name: str) -> list:
        with self._lock:
            return [event[1:] for event in self.events if event[0] == name]


@pytest.fixture
def event_collector() -> EventCollector:
    return EventCollector()


# ─────────────────────────────────────────────────────────────────────────────
# BACKGROUND SERVERS
# ─────────────────────────────────────────────────────────────────────────────


def echo_handler(client: socket.socket) -> None:
    while True:
        data = client.recv(4096)
        if not data:
            return
        client.sendall(data)


def http_handler(response: bytes) -> Callable[[socket.socket], None]:
    """A handler that reads one request head and answers with `response`."""
    def handle(client: socket.socket) -> None:
        data = b""
        while b"\r\n\r\n" not in data:
            chunk = client.recv(4096)
            if not chunk:
                return
            data += chunk
        client.sendall(response)
    return handle


class Backend:
    """TCP server in a background thread, standing in for the remote."""

    def __init__(self, handler: Optional[Callable[[socket.socket], None]] = None):
        self.handler = handler or echo_handler
        self.accepted = 0
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._socket.bind(("127.0.0.1", 0))
        self._socket.listen(16)
        self._socket.settimeout(0.1)
        self._stop = threading.Event()
        self._thread: threading.Thread = None

    @property
    def port(self) -> int:
        return self._socket.getsockname()[1]

    def start(self) -> "Backend":
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()
        return self

    def _serve(self) -> None:
        while not self._stop.is_set():
            try:
                client, _ = self._socket.accept()
            except socket.timeout:
                continue
            except OSError:
                return
            self.accepted += 1
            client.settimeout(None)
            threading.Thread(target=self._handle, args=(client,), daemon=True).start()

    def _handle(self, client: socket.socket) -> None:
        try:
            self.handler(client)
        except OSError:
            pass
        finally:
            client.close()

    def stop(self) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout=5.0)
        self._socket.close()


@pytest.fixture
def echo_backend() -> Generator[Backend, None, None]:
    """Remote that echoes every byte back."""
    backend = Backend().start()
    yield backend
    backend.stop()


class RunningServer:
    """Runs a devproxy Server in a background thread."""

    def __init__(self, server: Server):
        self.server = server
        self._thread: threading.Thread = None

    def start(self) -> "RunningServer":
        self._thread = threading.Thread(target=self.server.call, daemon=True)
        self._thread.start()
        if not self.server.ready.wait(5.0):
            raise RuntimeError("Server failed to start")
        return self

    @property
    def port(self) -> int:
        return self.server.address[1]

    def connect(self) -> socket.socket:
        return socket.create_connection(("127.0.0.1", self.port), timeout=5.0)

    def stop(self) -> None:
        self.server.close()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)


@pytest.fixture
def run_server() -> Generator[Callable[[Server], RunningServer], None, None]:
    """Start servers in the background; they are all stopped afterwards."""
    started = []

    def start(server: Server) -> RunningServer:
        running = RunningServer(server).start()
        started.append(running)
        return running

    yield start

    for running in started:
        running.stop()
