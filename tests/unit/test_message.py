"""
Unit tests for incremental HTTP message parsing.
"""

import gzip

import pytest

from devproxy.http import (
    FramingMode,
    HTTPMessage,
    HTTPParseError,
    HTTPRequestMessage,
    HTTPResponseMessage,
)


def feed(message: HTTPMessage, data: bytes, size: int) -> bytes:
    """Append `data` in blocks of `size` bytes; return the leftover."""
    rest = b""
    for i in range(0, len(data), size):
        rest += message.append(data[i:i + size])
    return rest


class TestContentLength:
    """Tests for Content-Length framing."""

    def test_body_and_leftover(self, content_length_request: bytes):
        """Test exactly Content-Length bytes are taken, the rest returned."""
        message = HTTPMessage()
        rest = message.append(content_length_request)

        assert rest == b"more body"
        assert message.body == b"body,more body,even "
        assert message.headers == {"host": "foo.bar", "content-length": "20"}
        assert message.done
        assert message.framing is FramingMode.CONTENT_LENGTH
        assert message.content_length == 20

    def test_no_body(self, sample_get_request: bytes):
        """Test a message without Content-Length is done with its head."""
        message = HTTPMessage()
        assert message.append(sample_get_request) == b""
        assert message.done
        assert message.body == b""

    def test_incomplete_body(self):
        """Test a short body leaves the message unfinished."""
        message = HTTPMessage()
        message.append(b"POST / HTTP/1.1\r\nContent-Length: 10\r\n\r\n12345")

        assert not message.done
        assert message.append(b"67890extra") == b"extra"
        assert message.body == b"1234567890"

    def test_append_after_done_returns_everything(self, sample_get_request: bytes):
        """Test a finished message hands back all further bytes."""
        message = HTTPMessage()
        message.append(sample_get_request)
        assert message.append(b"GET /next") == b"GET /next"

    def test_invalid_content_length(self):
        """Test a non-numeric Content-Length is rejected."""
        with pytest.raises(HTTPParseError):
            HTTPMessage().append(b"POST / HTTP/1.1\r\nContent-Length: lots\r\n\r\n")

    def test_negative_content_length(self):
        """Test a negative Content-Length is rejected."""
        with pytest.raises(HTTPParseError):
            HTTPMessage().append(b"POST / HTTP/1.1\r\nContent-Length: -1\r\n\r\n")


class TestChunked:
    """Tests for chunked transfer encoding."""

    def test_decodes_chunks(self, chunked_request: bytes):
        """Test chunk payloads are concatenated into the body."""
        message = HTTPMessage()
        rest = message.append(chunked_request)

        assert rest == b""
        assert message.done
        assert message.chunked
        assert message.body == b"body,more body,even more body"
        assert message.headers == {"host": "foo.bar", "transfer-encoding": "chunked"}

    def test_leftover_after_zero_chunk(self, chunked_request: bytes):
        """Test bytes after the terminating chunk are returned."""
        message = HTTPMessage()
        assert message.append(chunked_request + b"next message") == b"next message"

    def test_blank_line_ends_body(self):
        """Test an empty line where a size is expected ends the body."""
        message = HTTPMessage()
        rest = message.append(
            b"GET /foo HTTP/1.1\r\nHost: foo.bar\r\nTransfer-encoding: chunked\r\n\r\n"
            b"5\r\nbody,\r\n18\r\nmore body,even more body\r\n\r\nnext message"
        )

        assert message.done
        assert message.body == b"body,more body,even more body"
        assert rest == b"next message"

    def test_trailers_are_skipped(self):
        """Test trailer headers after the zero chunk are consumed."""
        message = HTTPMessage()
        rest = message.append(
            b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n"
            b"3\r\nabc\r\n0\r\nX-Checksum: 123\r\n\r\nrest"
        )

        assert message.done
        assert message.body == b"abc"
        assert rest == b"rest"

    def test_chunk_extensions_ignored(self):
        """Test ;name=value after the size is dropped."""
        message = HTTPMessage()
        message.append(
            b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n"
            b"3;name=value\r\nabc\r\n0\r\n\r\n"
        )
        assert message.body == b"abc"

    def test_transfer_encoding_is_case_insensitive(self):
        """Test "Chunked" selects chunked framing."""
        message = HTTPMessage()
        message.append(b"HTTP/1.1 200 OK\r\nTransfer-Encoding: Chunked\r\n\r\n")
        assert message.framing is FramingMode.CHUNKED

    def test_invalid_chunk_size(self):
        """Test a non-hex chunk size is rejected."""
        message = HTTPMessage()
        with pytest.raises(HTTPParseError):
            message.append(
                b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\nzz\r\n"
            )

    def test_missing_crlf_after_data(self):
        """Test chunk data must be followed by a line ending."""
        message = HTTPMessage()
        with pytest.raises(HTTPParseError):
            message.append(
                b"HTTP/1.1 200 OK\r\nTransfer-Encoding: chunked\r\n\r\n"
                b"3\r\nabcdef\r\n"
            )


class TestChunkBoundaries:
    """The result must not depend on how the stream is cut into blocks."""

    @pytest.mark.parametrize("size", [1, 2, 3, 7, 16])
    def test_content_length_split(self, content_length_request: bytes, size: int):
        """Test Content-Length parsing with arbitrary block sizes."""
        message = HTTPMessage()
        rest = feed(message, content_length_request, size)

        assert message.body == b"body,more body,even "
        assert message.headers == {"host": "foo.bar", "content-length": "20"}
        assert rest == b"more body"

    @pytest.mark.parametrize("size", [1, 2, 3, 7, 16])
    def test_chunked_split(self, chunked_request: bytes, size: int):
        """Test chunked parsing with arbitrary block sizes."""
        whole = HTTPMessage()
        whole.append(chunked_request)

        message = HTTPMessage()
        rest = feed(message, chunked_request, size)

        assert rest == b""
        assert message.done
        assert message.head == whole.head
        assert message.headers == whole.headers
        assert message.body == whole.body

    def test_terminator_split_across_blocks(self):
        """Test a \\r\\n\\r\\n straddling two appends completes the head."""
        message = HTTPMessage()
        message.append(b"GET / HTTP/1.1\r\nHost: a\r\n\r")
        assert not message.head_complete

        message.append(b"\n")
        assert message.head_complete
        assert message.done


class TestHeaders:
    """Tests for the parsed header map."""

    def test_keys_lowercased_values_stripped(self):
        """Test header names are lowercased and values trimmed."""
        message = HTTPMessage()
        message.append(b"GET / HTTP/1.1\r\nX-Thing:   spaced out  \r\n\r\n")
        assert message.headers == {"x-thing": "spaced out"}
        assert message.headers["X-Thing"] == "spaced out"

    def test_last_duplicate_wins(self):
        """Test a repeated header keeps its last value."""
        message = HTTPMessage()
        message.append(b"GET / HTTP/1.1\r\nAccept: a\r\nAccept: b\r\n\r\n")
        assert message.headers == {"accept": "b"}

    def test_value_may_contain_colons(self):
        """Test only the first colon separates name and value."""
        message = HTTPMessage()
        message.append(b"GET / HTTP/1.1\r\nHost: foo.bar:8080\r\n\r\n")
        assert message.headers["host"] == "foo.bar:8080"

    def test_line_without_colon(self):
        """Test a header line without a colon is rejected."""
        with pytest.raises(HTTPParseError):
            HTTPMessage().append(b"GET / HTTP/1.1\r\nnonsense\r\n\r\n")


class TestBody:
    """Tests for body decoding."""

    def test_gzip_body_is_decoded(self):
        """Test Content-Encoding: gzip bodies are decompressed."""
        payload = b"hello, compressed world"
        compressed = gzip.compress(payload)

        message = HTTPMessage()
        message.append(
            b"HTTP/1.1 200 OK\r\nContent-Encoding: GZIP\r\n"
            + f"Content-Length: {len(compressed)}\r\n\r\n".encode()
            + compressed
        )

        assert message.body == payload
        assert message.raw_body == compressed

    def test_corrupt_gzip(self):
        """Test undecodable gzip data raises HTTPParseError."""
        message = HTTPMessage()
        message.append(
            b"HTTP/1.1 200 OK\r\nContent-Encoding: gzip\r\nContent-Length: 4\r\n\r\nnope"
        )
        with pytest.raises(HTTPParseError):
            message.body


class TestRequestResponse:
    """Tests for the request and response line accessors."""

    def test_request_line(self, sample_get_request: bytes):
        """Test method, path and version of a request."""
        request = HTTPRequestMessage()
        request.append(sample_get_request)

        assert request.head_line == "GET /foo HTTP/1.1"
        assert request.http_method == "GET"
        assert request.path == "/foo"
        assert request.version == "HTTP/1.1"

    def test_status_line(self):
        """Test version, code and reason phrase of a response."""
        response = HTTPResponseMessage()
        response.append(b"HTTP/1.1 404 Not Found\r\nContent-Length: 0\r\n\r\n")

        assert response.version == "HTTP/1.1"
        assert response.status_code == "404"
        assert response.status_text == "Not Found"

    def test_accessors_before_head(self):
        """Test accessors are None while nothing has arrived."""
        response = HTTPResponseMessage()
        assert response.status_code is None
        assert response.status_text is None
        assert response.framing is None
