"""
=============================================================================
HTTP HEADER MAP
=============================================================================

Header blocks are turned into a plain mapping with LOWERCASE keys:

    Host: foo.bar                  {"host": "foo.bar",
    Content-Length: 20      ──►     "content-length": "20"}

DUPLICATES: the last occurrence wins.

    Accept: text/html
    Accept: application/json  ──►  {"accept": "application/json"}

No comma-joining, no multi-value lists. The proxy only needs headers for
framing (Content-Length, Transfer-Encoding), decoding (Content-Encoding)
and routing (Host), and for those a single value is all there is.

=============================================================================
"""

from typing import Iterable, Optional

from ..events import Publisher


class HTTPParseError(ValueError):
    """
    Raised when bytes can't be interpreted as an HTTP message.

    The proxy assumes well-formed HTTP. Malformed framing is reported to the
    caller, never patched over.
    """


# HTTP/1.1 header fields are ISO-8859-1 on the wire
HEADER_ENCODING = "iso-8859-1"


class Headers(dict):
    """
    Ordered, case-insensitive, last-write-wins header map.

    Keys are stored lowercased; lookups accept any case:

        headers["Content-Type"] == headers["content-type"]

    Because it is a dict, it compares equal to a plain dict of lowercase
    keys, which keeps tests readable.
    """

    def __init__(self, items: Iterable[tuple[str, str]] = ()):
        super().__init__()
        for key, value in items:
            self[key] = value

    def __setitem__(self, key: str, value: str) -> None:
        super().__setitem__(key.lower(), value)

    def __getitem__(self, key: str) -> str:
        return super().__getitem__(key.lower())

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and super().__contains__(key.lower())

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        return super().get(key.lower(), default)

    @classmethod
    def from_lines(cls, lines: Iterable[str]) -> "Headers":
        """
        Build a header map from "Name: value" lines.

        Empty lines are skipped. A non-empty line without a colon is
        malformed and raises HTTPParseError.
        """
        return cls(split_header_line(line) for line in lines if line)


def split_header_line(line: str) -> tuple[str, str]:
    """Split on the first colon: ("name", "value") with the value trimmed."""
    key, sep, value = line.partition(":")
    if not sep:
        raise HTTPParseError(f"Malformed header line: {line!r}")
    return key.strip().lower(), value.strip()


def head_lines(head: bytes) -> list[str]:
    """
    Decode a raw head block into lines without their line endings.

    Stops at the first empty line, so a buffer that carries body bytes after
    the header terminator is fine too.
    """
    text = head.decode(HEADER_ENCODING)
    lines = []
    for line in text.split("\n"):
        line = line.rstrip("\r")
        if not line and lines:
            break
        lines.append(line)
    return lines


class HeaderParser(Publisher):
    """
    Single-shot header parser for a raw first packet.

    Unlike HTTPMessage, which is incremental, this takes whatever bytes are
    at hand (typically the first TCP segment of a request), ignores the
    request line and anything after the blank line, and broadcasts one
    `header(key, value)` event per parsed line.

        parser = HeaderParser().on("header", lambda k, v: print(k, v))
        headers = parser.parse(b"GET / HTTP/1.1\\r\\nHost: a\\r\\n\\r\\n")
    """

    def parse(self, data: bytes) -> Headers:
        headers = Headers()
        for line in head_lines(data)[1:]:
            if not line:
                continue
            key, value = split_header_line(line)
            headers[key] = value
            self.broadcast("header", key, value)
        return headers
