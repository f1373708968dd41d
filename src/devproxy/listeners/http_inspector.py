"""
HTTP exchange log.

Attach to a Server; every connection gets its own HTTPRequestSplitter and
every completed request/response pair becomes one line:

    a1b2c3d4 GET /api/users => 200 OK (1532 bytes)
    a1b2c3d4 POST /api/users => 201 Created (88 bytes)

Connections that don't carry HTTP end with an HTTPParseError, which is
reported by the Connection as main_loop_error like any other failure.
"""

import logging

from ..http import HTTPRequestSplitter
from .reporting import logger as report_logger


class HTTPInspector:
    """
    Server listener logging one line per HTTP exchange.

        server.subscribe(HTTPInspector())
    """

    def __init__(self, log: logging.Logger = report_logger, show_bodies: bool = False):
        self.log = log
        self.show_bodies = show_bodies

    def new_connection(self, connection) -> None:
        splitter = HTTPRequestSplitter()
        splitter.on(
            "http_request",
            lambda request, response: self.http_request(connection, request, response),
        )
        connection.subscribe(splitter)

    def http_request(self, connection, request, response) -> None:
        status = " ".join(filter(None, (response.status_code, response.status_text)))
        self.log.info(
            f"{connection.id} {request.http_method} {request.path} => "
            f"{status} ({len(response.raw_body)} bytes)"
        )
        if self.show_bodies:
            self.log.debug(f"{connection.id} request body: {request.body!r}")
            self.log.debug(f"{connection.id} response body: {response.body!r}")
