"""
=============================================================================
HTTP RECONSTRUCTION
=============================================================================

Turns the raw byte stream relayed by a Connection back into HTTP messages.

    headers.py    Headers map, HeaderParser, HTTPParseError
    message.py    HTTPMessage and its request/response flavours
    splitter.py   HTTPRequestSplitter: pairs requests with responses

Only framing is understood here (Content-Length, chunked encoding, gzip for
display). Nothing is routed, cached or rewritten.

=============================================================================
"""

from .headers import Headers, HeaderParser, HTTPParseError
from .message import (
    FramingMode,
    HTTPMessage,
    HTTPRequestMessage,
    HTTPResponseMessage,
)
from .splitter import HTTPRequestSplitter

__all__ = [
    "Headers",
    "HeaderParser",
    "HTTPParseError",
    "FramingMode",
    "HTTPMessage",
    "HTTPRequestMessage",
    "HTTPResponseMessage",
    "HTTPRequestSplitter",
]
