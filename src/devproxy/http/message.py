"""
=============================================================================
INCREMENTAL HTTP MESSAGE PARSER
=============================================================================

The relay sees HTTP as a stream of blocks of at most 4096 bytes. Those
blocks have NOTHING to do with message boundaries:

    block 1: "GET /a HTTP/1.1\r\nHost: x\r\n\r"
    block 2: "\nGET /b HTTP/1.1\r\nContent-Length: 5\r\n\r\nhel"
    block 3: "lo"

An HTTPMessage is fed those blocks one at a time with append(). It keeps
whatever state it needs to pick up where it left off, and hands back the
bytes that belong to the NEXT message ("leftover") once it is complete.

=============================================================================
PARSER STATES
=============================================================================

    ┌──────────┐  \r\n\r\n seen  ┌──────────────────────────────────────┐
    │   HEAD   │ ───────────────►│ framing decided from the headers     │
    └──────────┘                 └──────────────┬───────────────────────┘
                                                │
                  ┌─────────────────────────────┴───────────┐
                  │ CONTENT_LENGTH                          │ CHUNKED
                  ▼                                         ▼
       take exactly N - len(body)          ┌──► SIZE   "1a;ext\r\n"
       bytes, rest is leftover             │      │ size > 0      size == 0
                  │                        │      ▼                  │
                  ▼                        │    DATA   (size bytes)  │
                done                       │      │                  ▼
                                           │      ▼               TRAILER
                                           └── DATA_END "\r\n"   lines until
                                                                 an empty one
                                                                     │
                                                                     ▼
                                                                   done

Every state that looks for a line ending keeps a small line buffer, so a
size line or a CRLF split across two blocks is no problem.

=============================================================================
"""

import gzip
import zlib
from enum import Enum
from typing import Optional

from .headers import Headers, HTTPParseError, head_lines


CRLF = b"\r\n"
HEAD_TERMINATOR = CRLF + CRLF


class FramingMode(Enum):
    """How the end of the body is found."""
    CONTENT_LENGTH = "content-length"
    CHUNKED = "chunked"


class ChunkState(Enum):
    SIZE = "size"            # reading a chunk-size line
    DATA = "data"            # reading chunk payload
    DATA_END = "data_end"    # expecting the CRLF after a payload
    TRAILER = "trailer"      # after the zero chunk, up to the blank line


class HTTPMessage:
    """
    One HTTP request or response, reconstructed incrementally.

    Usage:
        message = HTTPMessage()
        rest = message.append(block)
        while not message.done:
            rest = message.append(next_block)
        # `rest` is the start of the next pipelined message

    Attributes exposed:
        head        Raw header block, including the terminating \\r\\n\\r\\n
        headers     Headers map (lowercase keys, last duplicate wins)
        body        Body bytes, gunzipped if Content-Encoding says gzip
        raw_body    Body bytes exactly as they were framed
        framing     FramingMode, None until the head is complete
        done        True once the full message has been consumed
    """

    def __init__(self):
        self._head = bytearray()
        self._body = bytearray()
        self._head_complete = False
        self._headers: Optional[Headers] = None
        self.framing: Optional[FramingMode] = None
        self._content_length = 0
        self.done = False

        # Chunked decoding state
        self._chunk_state = ChunkState.SIZE
        self._chunk_remaining = 0
        self._line = bytearray()

    # =========================================================================
    # FEEDING DATA
    # =========================================================================

    def append(self, data: bytes) -> bytes:
        """
        Consume a block of bytes.

        Args:
            data: Any slice of the byte stream, aligned to nothing in
                  particular.

        Returns:
            The bytes that come after the end of this message, or b"" if
            the whole block belonged to it. Once the message is done,
            everything passed in is returned unchanged.

        Raises:
            HTTPParseError: On malformed framing (bad Content-Length, bad
                            chunk size, missing CRLF after chunk data).
        """
        data = bytes(data)
        if self.done:
            return data

        if not self._head_complete:
            data = self._append_head(data)
            if not self._head_complete:
                return b""

        if self.done:
            return data

        if self.framing is FramingMode.CHUNKED:
            return self._append_chunks(data)
        return self._append_by_content_length(data)

    def _append_head(self, data: bytes) -> bytes:
        """Add to the head; return the bytes past the terminator, if any."""
        # The terminator may straddle the previous block, so look back 3 bytes
        search_from = max(0, len(self._head) - (len(HEAD_TERMINATOR) - 1))
        self._head += data

        end = self._head.find(HEAD_TERMINATOR, search_from)
        if end == -1:
            return b""

        end += len(HEAD_TERMINATOR)
        rest = bytes(self._head[end:])
        del self._head[end:]
        self._head_complete = True
        self._decide_framing()
        return rest

    def _decide_framing(self) -> None:
        headers = self.headers

        if headers.get("transfer-encoding", "").lower() == "chunked":
            self.framing = FramingMode.CHUNKED
            return

        self.framing = FramingMode.CONTENT_LENGTH
        raw_length = headers.get("content-length", "0")
        try:
            self._content_length = int(raw_length)
        except ValueError:
            raise HTTPParseError(f"Invalid Content-Length: {raw_length!r}")
        if self._content_length < 0:
            raise HTTPParseError(f"Negative Content-Length: {raw_length!r}")

        if self._content_length == 0:
            self.done = True

    def _append_by_content_length(self, data: bytes) -> bytes:
        remaining = self._content_length - len(self._body)
        self._body += data[:remaining]
        self.done = len(self._body) == self._content_length
        return data[remaining:]

    def _append_chunks(self, data: bytes) -> bytes:
        view = memoryview(data)
        pos = 0

        while pos < len(view) and not self.done:
            if self._chunk_state is ChunkState.DATA:
                take = min(self._chunk_remaining, len(view) - pos)
                self._body += view[pos:pos + take]
                self._chunk_remaining -= take
                pos += take
                if self._chunk_remaining == 0:
                    self._chunk_state = ChunkState.DATA_END
                continue

            line, pos = self._read_line(view, pos)
            if line is None:
                break
            self._handle_chunk_line(line)

        return bytes(view[pos:])

    def _read_line(self, view: memoryview, pos: int) -> tuple[Optional[bytes], int]:
        """
        Take bytes up to and including the next LF.

        Returns (line without its line ending, new position), or
        (None, end of view) if the line isn't complete yet.
        """
        end = bytes(view[pos:]).find(b"\n")
        if end == -1:
            self._line += view[pos:]
            return None, len(view)

        self._line += view[pos:pos + end]
        line = bytes(self._line).rstrip(b"\r")
        self._line.clear()
        return line, pos + end + 1

    def _handle_chunk_line(self, line: bytes) -> None:
        state = self._chunk_state

        if state is ChunkState.SIZE:
            if not line:
                # A blank line where a size was expected ends the body
                self.done = True
                return
            size = self._parse_chunk_size(line)
            if size == 0:
                self._chunk_state = ChunkState.TRAILER
            else:
                self._chunk_remaining = size
                self._chunk_state = ChunkState.DATA

        elif state is ChunkState.DATA_END:
            if line:
                raise HTTPParseError(
                    f"Expected CRLF after chunk data, got {line[:20]!r}"
                )
            self._chunk_state = ChunkState.SIZE

        elif state is ChunkState.TRAILER:
            # Trailer headers are skipped, the blank line ends the message
            if not line:
                self.done = True

    @staticmethod
    def _parse_chunk_size(line: bytes) -> int:
        size_text = line.split(b";", 1)[0].strip()
        try:
            size = int(size_text, 16)
        except ValueError:
            raise HTTPParseError(f"Invalid chunk size: {line[:20]!r}")
        if size < 0:
            raise HTTPParseError(f"Invalid chunk size: {line[:20]!r}")
        return size

    # =========================================================================
    # READING THE RESULT
    # =========================================================================

    @property
    def head(self) -> bytes:
        return bytes(self._head)

    @property
    def head_complete(self) -> bool:
        return self._head_complete

    @property
    def head_line(self) -> str:
        """The request/status line, without its line ending."""
        lines = head_lines(self.head)
        return lines[0] if lines else ""

    @property
    def headers(self) -> Headers:
        """
        Parsed header map.

        Cached once the head is complete; before that it is re-parsed from
        whatever part of the head has arrived.
        """
        if self._headers is not None:
            return self._headers

        headers = Headers.from_lines(head_lines(self.head)[1:])
        if self._head_complete:
            self._headers = headers
        return headers

    @property
    def content_length(self) -> int:
        return self._content_length

    @property
    def chunked(self) -> bool:
        return self.framing is FramingMode.CHUNKED

    @property
    def raw_body(self) -> bytes:
        return bytes(self._body)

    @property
    def body(self) -> bytes:
        """
        The message body.

        If Content-Encoding mentions gzip the body is decompressed
        transparently. Truncated or corrupt gzip data raises HTTPParseError.
        """
        encoding = self.headers.get("content-encoding", "") or ""
        if "gzip" not in encoding.lower():
            return bytes(self._body)

        try:
            return gzip.decompress(bytes(self._body))
        except (OSError, EOFError, zlib.error) as e:
            raise HTTPParseError(f"Failed to decompress gzip body: {e}")

    def _token(self, index: int) -> Optional[str]:
        tokens = self.head_line.split()
        return tokens[index] if len(tokens) > index else None

    def __repr__(self) -> str:
        state = "done" if self.done else ("body" if self._head_complete else "head")
        return f"<{type(self).__name__} {self.head_line!r} {state}>"


class HTTPRequestMessage(HTTPMessage):
    """An HTTP request: `GET /path HTTP/1.1`."""

    @property
    def http_method(self) -> Optional[str]:
        return self._token(0)

    @property
    def path(self) -> Optional[str]:
        return self._token(1)

    @property
    def version(self) -> Optional[str]:
        return self._token(2)


class HTTPResponseMessage(HTTPMessage):
    """An HTTP response: `HTTP/1.1 404 Not Found`."""

    @property
    def version(self) -> Optional[str]:
        return self._token(0)

    @property
    def status_code(self) -> Optional[str]:
        return self._token(1)

    @property
    def status_text(self) -> Optional[str]:
        """The reason phrase; may contain spaces ("Not Found")."""
        parts = self.head_line.split(None, 2)
        return parts[2] if len(parts) > 2 else None
