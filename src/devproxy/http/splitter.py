"""
=============================================================================
REQUEST/RESPONSE SPLITTER
=============================================================================

A Connection broadcasts `data_in` and `data_out` for every block it relays.
That is too low level for most HTTP work: several requests may share one
connection, a block may hold half a header or three whole messages, bodies
may be chunked or gzipped.

HTTPRequestSplitter subscribes to a Connection and turns that stream into
one event per exchange:

    http_request(HTTPRequestMessage, HTTPResponseMessage)

=============================================================================
PAIRING
=============================================================================

    data_in                              data_out
       │                                    │
       ▼                                    ▼
    ┌───────┬───────┬───────────┐        ┌──────────┐
    │ req 1 │ req 2 │ req 3 ... │        │ response │
    │ done  │ done  │ (filling) │        │(filling) │
    └───┬───┴───────┴───────────┘        └────┬─────┘
        │        oldest first                 │ done
        └──────────────────┬──────────────────┘
                           ▼
               http_request(req 1, response)

Responses are matched to requests strictly in order: the Nth completed
response belongs to the Nth request. HTTP/1.1 guarantees this for
pipelining; servers that answer out of order are not supported.

One splitter tracks one connection. Create a new one per Connection.

=============================================================================
"""

import logging
from collections import deque

from ..events import Publisher
from .message import HTTPRequestMessage, HTTPResponseMessage


logger = logging.getLogger(__name__)


class HTTPRequestSplitter(Publisher):
    """
    Pairs parsed requests with parsed responses.

    Usage:
        splitter = HTTPRequestSplitter()
        splitter.on("http_request", lambda req, res: print(req.path, res.status_code))
        connection.subscribe(splitter)
    """

    def __init__(self):
        # The tail is the request currently being filled
        self.requests: deque[HTTPRequestMessage] = deque([HTTPRequestMessage()])
        self.response = HTTPResponseMessage()

    @property
    def pending_requests(self) -> int:
        """Number of complete requests still waiting for a response."""
        return sum(1 for request in self.requests if request.done)

    def data_in(self, conn, data: bytes) -> None:
        while data:
            request = self.requests[-1]
            data = request.append(data)
            if not request.done:
                break
            self.requests.append(HTTPRequestMessage())

    def data_out(self, conn, data: bytes) -> None:
        while data:
            data = self.response.append(data)
            if not self.response.done:
                break

            request = self.requests.popleft()
            if not self.requests:
                self.requests.append(HTTPRequestMessage())
            if not request.done:
                logger.debug(f"Response completed before its request: {request!r}")

            response, self.response = self.response, HTTPResponseMessage()
            self.broadcast("http_request", request, response)
