"""
=============================================================================
REPORTING LISTENERS
=============================================================================

The Server and Connection classes have no logging or UI of their own.
They broadcast events; these listeners turn them into log lines.

CONSOLE REPORTER
────────────────

Each connection gets an incrementing number, followed by:

    1. +++          new connection
    1. < 91         91 bytes proxied to the remote
    2. +++
    1. > 4096       4096 bytes proxied back from the remote
    1. > 3422
    1. ---          connection closed

TIMING REPORTER
───────────────

    #1: input 91 bytes
    #1: reply started 0.12s, 4096 bytes
    #1: continued 0.13s, 3422 bytes      (verbose only)

=============================================================================
"""

import logging
import threading
import time


# Namespaced so the report can be routed separately from diagnostics:
#   logging.getLogger("devproxy.report").addHandler(file_handler)
logger = logging.getLogger("devproxy.report")


class ConnectionNumbering:
    """Thread-safe connection → sequence number registry."""

    def __init__(self):
        self._count = 0
        self._numbers: dict = {}
        self._lock = threading.Lock()

    def assign(self, connection) -> int:
        with self._lock:
            self._count += 1
            self._numbers[connection] = self._count
            return self._count

    def get(self, connection):
        with self._lock:
            return self._numbers.get(connection, "?")

    def release(self, connection):
        with self._lock:
            return self._numbers.pop(connection, "?")


class ConsoleReporter:
    """
    Logs connection lifecycle and traffic volume.

    Subscribe it to every Connection:

        Connection(sock, factory).subscribe(ConsoleReporter())
    """

    def __init__(self, log: logging.Logger = logger):
        self.log = log
        self._numbering = ConnectionNumbering()

    def start_connection(self, conn) -> None:
        number = self._numbering.assign(conn)
        self.log.info(f"{number}. +++")

    def end_connection(self, conn) -> None:
        number = self._numbering.release(conn)
        self.log.info(f"{number}. ---")

    def data_in(self, conn, data: bytes) -> None:
        self.log.info(f"{self._numbering.get(conn)}. < {len(data)}")

    def data_out(self, conn, data: bytes) -> None:
        self.log.info(f"{self._numbering.get(conn)}. > {len(data)}")

    def main_loop_error(self, conn, error: BaseException) -> None:
        self.log.error(
            f"{self._numbering.get(conn)}. {type(error).__name__} {error}",
            exc_info=error,
        )


class TimingReporter:
    """
    Logs how long the remote takes to answer.

    Per connection it remembers when the client first sent something, then
    reports the delay until the first block comes back. With verbose=True
    every following block is reported as well.
    """

    def __init__(self, verbose: bool = False, log: logging.Logger = logger):
        self.verbose = verbose
        self.log = log
        self._numbering = ConnectionNumbering()
        self._started_at: dict = {}
        self._got_reply: set = set()
        self._lock = threading.Lock()

    def start_connection(self, conn) -> None:
        self._numbering.assign(conn)

    def data_in(self, conn, data: bytes) -> None:
        with self._lock:
            self._started_at.setdefault(conn, time.monotonic())
        self.log.info(f"#{self._numbering.get(conn)}: input {len(data)} bytes")

    def data_out(self, conn, data: bytes) -> None:
        with self._lock:
            started = self._started_at.get(conn, time.monotonic())
            first = conn not in self._got_reply
            self._got_reply.add(conn)
        elapsed = time.monotonic() - started
        number = self._numbering.get(conn)

        if first:
            self.log.info(f"#{number}: reply started {elapsed:.2f}s, {len(data)} bytes")
        elif self.verbose:
            self.log.info(f"#{number}: continued {elapsed:.2f}s, {len(data)} bytes")

    def end_connection(self, conn) -> None:
        self._numbering.release(conn)
        with self._lock:
            self._started_at.pop(conn, None)
            self._got_reply.discard(conn)


class ServerReporter:
    """Logs Server-level events (accepted and reaped connections)."""

    def __init__(self, log: logging.Logger = logger):
        self.log = log

    def new_connection(self, conn) -> None:
        self.log.debug(f"Accepted connection {conn.id}")

    def dead_connection(self, conn) -> None:
        self.log.debug(f"Reaped connection {conn.id}")
