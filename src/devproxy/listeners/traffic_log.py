"""
Traffic capture: write every connection's raw bytes to disk.

Attach to a Server; each new connection gets two files:

    /tmp/proxy.1.in     bytes the client sent
    /tmp/proxy.1.out    bytes the remote sent back
    /tmp/proxy.2.in     ...

Numbering continues after the highest number already present for the
prefix, so restarting the proxy never overwrites an earlier capture.
"""

import logging
import os
import re
import tempfile
import threading
from pathlib import Path
from typing import Optional


logger = logging.getLogger(__name__)


class RequestResponseLogging:
    """
    Server listener capturing traffic to {directory}/{name}.{n}.{in|out}.

    Usage:
        server.subscribe(RequestResponseLogging(directory="./captures", name="api"))
    """

    def __init__(self, directory: Optional[str] = None, name: str = "proxy"):
        self.directory = Path(directory or tempfile.gettempdir())
        self.name = name
        self._lock = threading.Lock()
        self._count = self._highest_existing()

    def _highest_existing(self) -> int:
        pattern = re.compile(rf"^{re.escape(self.name)}\.(\d+)\.(in|out)$")
        highest = 0
        if self.directory.is_dir():
            for entry in os.listdir(self.directory):
                match = pattern.match(entry)
                if match:
                    highest = max(highest, int(match.group(1)))
        return highest

    def log_name(self, number: int, suffix: str) -> Path:
        return self.directory / f"{self.name}.{number}.{suffix}"

    def next_number(self) -> int:
        with self._lock:
            self._count += 1
            return self._count

    def new_connection(self, connection) -> None:
        number = self.next_number()
        self.directory.mkdir(parents=True, exist_ok=True)

        in_file = open(self.log_name(number, "in"), "ab")
        out_file = open(self.log_name(number, "out"), "ab")
        logger.debug(f"Capturing connection {connection.id} as {self.name}.{number}")

        def write(fd, data: bytes) -> None:
            fd.write(data)
            fd.flush()

        def close(conn) -> None:
            in_file.close()
            out_file.close()

        (connection
            .on("data_in", lambda conn, data: write(in_file, data))
            .on("data_out", lambda conn, data: write(out_file, data))
            .on("end_connection", close))
